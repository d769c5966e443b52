"""
Exception types for the AgentFS overlay broker.

Session lookups never raise: a missing session is reported as ``None`` by
the registry and every caller treats it as a no-op.
"""


class AgentFSError(Exception):
    """Base class for all broker errors."""


class MountError(AgentFSError):
    """Raised when an overlay mount attempt fails.

    Fatal to the mount attempt only. The session keeps running unsandboxed
    and the message is stored on ``MountInfo.error``.
    """

    def __init__(self, message: str, session_id: str, reason: str):
        super().__init__(message)
        self.session_id = session_id
        self.reason = reason


class MountUnavailableError(MountError):
    """Raised when the agentfs CLI is not installed."""

    def __init__(self, message: str, session_id: str):
        super().__init__(message, session_id=session_id, reason="CLI_NOT_FOUND")


class MountVerificationError(MountError):
    """Raised when the mount process died or the mount point is not live."""


class StoreBusyError(AgentFSError):
    """Raised when the session store stayed locked past the retry budget."""

    def __init__(self, message: str, path: str, attempts: int):
        super().__init__(message)
        self.path = path
        self.attempts = attempts


class StoreNotOpenError(AgentFSError):
    """Raised when a store operation is attempted on a closed handle."""


class TrackingError(AgentFSError):
    """Raised internally when a tool call cannot be recorded.

    Never escapes the call tracker.
    """
