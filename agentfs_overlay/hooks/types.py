"""
Records exchanged with the host's hook dispatcher.

Adapters only read the attributes listed here, so any object with the
same attributes can be passed in place of these dataclasses.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ToolCallInput:
    """Identity of one tool invocation."""
    tool: str
    session_id: str
    call_id: str


@dataclass
class ToolArgs:
    """Tool arguments; before-hooks may rewrite entries in place."""
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    """Tool result; after-hooks may rewrite fields in place."""
    title: str = ""
    output: str = ""
    metadata: Any = None


@dataclass
class LifecycleEvent:
    """
    Host event.

    ``session.created`` and ``session.deleted`` carry the session under
    ``properties["info"]["id"]``, ``session.status`` under
    ``properties["sessionID"]``.
    """
    type: str
    properties: dict[str, Any] = field(default_factory=dict)

    def session_id(self) -> Optional[str]:
        info = self.properties.get("info")
        if isinstance(info, dict) and info.get("id"):
            return info["id"]
        return self.properties.get("sessionID") or None
