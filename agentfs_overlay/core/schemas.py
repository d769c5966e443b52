"""
Shared data types for sessions, mounts and tracked tool calls.

MountInfo and Session are mutable dataclasses owned by the session
registry; the mount controller is the only writer of MountInfo fields.
Records read back from the session store are pydantic models.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from ..services.store import AgentStore


# Record id used when the pending row could not be created
INVALID_RECORD_ID = -1


class SessionState(str, Enum):
    """Lifecycle state of a session id inside the registry."""
    ABSENT = "absent"
    INITIALIZING = "initializing"
    MOUNTED = "mounted"
    MOUNT_FAILED = "mount-failed"
    STORE_OPEN = "store-open"
    CLOSING = "closing"


class ToolCallStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class MountInfo:
    """
    Overlay mount state for one session.

    Attributes:
        session_id: Session owning the mount
        project_path: Base project directory the overlay layers over
        mount_path: Directory where the overlay is presented
        store_path: SQLite file backing the overlay and the call log
        mounted: True only while the overlay process is verified live
        pid: Mount process id, set only while mounted
        error: Last mount/unmount failure, cleared on a successful mount
    """
    session_id: str
    project_path: str
    mount_path: str
    store_path: str
    mounted: bool = False
    pid: Optional[int] = None
    error: Optional[str] = None


@dataclass
class Session:
    """
    A live session: project root, overlay mount and optional store handle.

    ``deferred_metadata`` holds session keys written once the store is
    first opened, for sessions whose store open was deferred by the mount.
    """
    session_id: str
    project_path: str
    mount: MountInfo
    store: Optional["AgentStore"] = None
    state: SessionState = SessionState.INITIALIZING
    deferred_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PendingCall:
    """
    In-flight tool call awaiting its completion event.

    ``record_id`` resolves to the id of the pending row in the store, or to
    INVALID_RECORD_ID when the row could not be created.
    """
    session_id: str
    call_id: str
    tool: str
    start_time: float
    args: Any = None
    record_id: Optional[asyncio.Future] = field(default=None, repr=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.session_id, self.call_id)


class ToolCallRecord(BaseModel):
    """One row of the tool call log."""

    id: int
    name: str
    parameters: Any = None
    result: Any = None
    error: Optional[str] = None
    status: ToolCallStatus = ToolCallStatus.PENDING
    started_at: float
    completed_at: Optional[float] = None
    duration_ms: Optional[int] = None


class ToolStats(BaseModel):
    """Aggregated call counts for one tool name."""

    name: str
    total_calls: int = 0
    successful: int = 0
    failed: int = 0
    avg_duration_ms: float = Field(default=0.0, description="Mean over completed calls")


class KVEntry(BaseModel):
    key: str
    value: Any = None
