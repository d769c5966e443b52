"""
Agent-callable tool definition.

Tools are plain async callables taking the argument dict and the calling
context, and returning a JSON string for the agent.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from ..services.session_registry import SessionRegistry
from ..services.store import AgentStore

SESSION_NOT_FOUND = "Session not found"
STORE_UNAVAILABLE = "Session store unavailable"


@dataclass
class ToolContext:
    """Who is calling: the host passes the session and call ids."""
    session_id: str
    call_id: Optional[str] = None


ToolFunction = Callable[[dict[str, Any], ToolContext], Awaitable[str]]


@dataclass
class AgentTool:
    name: str
    description: str
    execute: ToolFunction
    parameters: dict[str, str] = field(default_factory=dict)

    async def __call__(self, args: dict[str, Any], context: ToolContext) -> str:
        return await self.execute(args, context)


def to_json(payload: Any) -> str:
    return json.dumps(payload, default=str)


def tool_error(message: str, **extra: Any) -> str:
    return to_json({"error": message, **extra})


async def session_store(
    registry: SessionRegistry, session_id: str
) -> tuple[Optional[AgentStore], Optional[str]]:
    """
    Store of the calling session, opened on first use.

    Returns (store, None), or (None, error message) when the session is
    unknown or its store cannot be opened.
    """
    if registry.get_session(session_id) is None:
        return None, SESSION_NOT_FOUND
    store = await registry.get_store(session_id)
    if store is None:
        return None, STORE_UNAVAILABLE
    return store, None
