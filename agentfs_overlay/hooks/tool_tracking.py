"""
Tool tracking hooks: feed tool execution events into the call tracker.
"""
from typing import Awaitable, Callable

from ..services.call_tracker import CallTracker
from .types import ToolArgs, ToolCallInput, ToolResult


def create_tool_tracking_hooks(
    tracker: CallTracker,
) -> tuple[
    Callable[[ToolCallInput, ToolArgs], Awaitable[None]],
    Callable[[ToolCallInput, ToolResult], Awaitable[None]],
]:
    """Create the (before, after) tracking hooks."""

    async def track_start(call: ToolCallInput, output: ToolArgs) -> None:
        await tracker.begin(call.session_id, call.call_id, call.tool, output.args)

    async def track_end(call: ToolCallInput, output: ToolResult) -> None:
        await tracker.end(
            call.session_id,
            call.call_id,
            call.tool,
            title=output.title,
            output=output.output,
            metadata=output.metadata,
        )

    return track_start, track_end
