from .cleanup import ShutdownHandler
from .path_rewrite import PATH_TOOLS, create_path_rewrite_hooks
from .session_events import create_session_event_handler
from .tool_tracking import create_tool_tracking_hooks
from .types import LifecycleEvent, ToolArgs, ToolCallInput, ToolResult

__all__ = [
    "LifecycleEvent",
    "PATH_TOOLS",
    "ShutdownHandler",
    "ToolArgs",
    "ToolCallInput",
    "ToolResult",
    "create_path_rewrite_hooks",
    "create_session_event_handler",
    "create_tool_tracking_hooks",
]
