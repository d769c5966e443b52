"""
Key-value tools: persistent session memory for the agent.

Keys are namespaced by convention ("user:", "context:", "cache:").
"""
import json
import logging
from typing import Any

from ..services.session_registry import SessionRegistry
from .base import AgentTool, ToolContext, session_store, to_json, tool_error

logger = logging.getLogger(__name__)


def create_kv_tools(registry: SessionRegistry) -> list[AgentTool]:
    """
    Create kv_get, kv_set, kv_delete and kv_list bound to a registry.

    Returns:
        List of AgentTool
    """

    async def kv_get(args: dict[str, Any], context: ToolContext) -> str:
        key = args.get("key", "")
        store, error = await session_store(registry, context.session_id)
        if store is None:
            return tool_error(error, key=key)

        value = await store.kv.get(key)
        if value is None:
            return to_json({"key": key, "value": None, "found": False})
        return to_json({"key": key, "value": value, "found": True})

    async def kv_set(args: dict[str, Any], context: ToolContext) -> str:
        key = args.get("key", "")
        store, error = await session_store(registry, context.session_id)
        if store is None:
            return tool_error(error, key=key)

        raw = args.get("value")
        # Objects and arrays arrive as JSON text
        try:
            value = json.loads(raw) if isinstance(raw, str) else raw
        except ValueError:
            value = raw

        await store.kv.set(key, value)
        logger.debug(f"kv_set {key} for session {context.session_id}")
        return to_json({"key": key, "stored": True})

    async def kv_delete(args: dict[str, Any], context: ToolContext) -> str:
        key = args.get("key", "")
        store, error = await session_store(registry, context.session_id)
        if store is None:
            return tool_error(error, key=key)

        await store.kv.delete(key)
        return to_json({"key": key, "deleted": True})

    async def kv_list(args: dict[str, Any], context: ToolContext) -> str:
        store, error = await session_store(registry, context.session_id)
        if store is None:
            return tool_error(error)

        prefix = args.get("prefix") or ""
        entries = await store.kv.list(prefix)
        return to_json({
            "prefix": prefix,
            "count": len(entries),
            "entries": [entry.model_dump() for entry in entries],
        })

    return [
        AgentTool(
            name="kv_get",
            description=(
                "Retrieve a value from persistent key-value storage. Use for recalling "
                "preferences, session state, or cross-session memory."
            ),
            execute=kv_get,
            parameters={"key": "Key to retrieve (e.g. 'user:preferences')"},
        ),
        AgentTool(
            name="kv_set",
            description=(
                "Store a value in persistent key-value storage. Use namespace prefixes "
                "like 'user:', 'context:', 'cache:' for organization."
            ),
            execute=kv_set,
            parameters={
                "key": "Key to store (namespace with ':')",
                "value": "Value as JSON text; objects and arrays are parsed",
            },
        ),
        AgentTool(
            name="kv_delete",
            description="Delete a value from persistent key-value storage.",
            execute=kv_delete,
            parameters={"key": "Key to delete"},
        ),
        AgentTool(
            name="kv_list",
            description="List all keys in persistent storage with an optional prefix filter.",
            execute=kv_list,
            parameters={"prefix": "Key prefix to filter by (optional)"},
        ),
    ]
