"""
Call log tools: let the agent inspect its own tracked tool calls.

Both tools wait for outstanding pending rows of the session first, so a
tracked call to tools_list sees its own pending entry.
"""
from datetime import datetime, timezone
from typing import Any, Optional

from ..core.schemas import ToolCallRecord, ToolCallStatus
from ..services.call_tracker import CallTracker
from ..services.session_registry import SessionRegistry
from .base import AgentTool, ToolContext, session_store, to_json, tool_error

DEFAULT_LIST_LIMIT = 20


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _summarize(record: ToolCallRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "name": record.name,
        "status": record.status.value,
        "started_at": _iso(record.started_at),
        "completed_at": _iso(record.completed_at),
        "duration_ms": record.duration_ms,
        "has_parameters": record.parameters is not None,
        "has_result": record.result is not None,
        "error": record.error,
    }


def create_call_log_tools(registry: SessionRegistry, tracker: CallTracker) -> list[AgentTool]:
    """Create tools_list and tools_stats."""

    async def tools_list(args: dict[str, Any], context: ToolContext) -> str:
        store, error = await session_store(registry, context.session_id)
        if store is None:
            return tool_error(error)

        await tracker.wait_pending(context.session_id)

        limit = int(args.get("limit") or DEFAULT_LIST_LIMIT)
        name = args.get("name")
        status = args.get("status")

        calls = (
            await store.tools.get_by_name(name, limit)
            if name
            else await store.tools.get_recent(0, limit)
        )
        if status:
            try:
                wanted = ToolCallStatus(status)
            except ValueError:
                return to_json({"error": f"Invalid status: {status}"})
            calls = [call for call in calls if call.status == wanted]

        return to_json({"count": len(calls), "calls": [_summarize(call) for call in calls]})

    async def tools_stats(args: dict[str, Any], context: ToolContext) -> str:
        store, error = await session_store(registry, context.session_id)
        if store is None:
            return tool_error(error)

        await tracker.wait_pending(context.session_id)
        stats = await store.tools.get_stats()

        return to_json({
            "summary": {
                "total_calls": sum(s.total_calls for s in stats),
                "successful": sum(s.successful for s in stats),
                "failed": sum(s.failed for s in stats),
                "unique_tools": len(stats),
            },
            "by_tool": [
                {
                    "name": s.name,
                    "total_calls": s.total_calls,
                    "successful": s.successful,
                    "failed": s.failed,
                    "avg_duration_ms": round(s.avg_duration_ms),
                }
                for s in stats
            ],
        })

    return [
        AgentTool(
            name="tools_list",
            description=(
                "List recent tool calls tracked by AgentFS. Shows tool name, status, "
                "duration, and timestamps."
            ),
            execute=tools_list,
            parameters={
                "limit": "Maximum number of tool calls to return (default: 20)",
                "name": "Filter by tool name",
                "status": "Filter by status: pending, success or error",
            },
        ),
        AgentTool(
            name="tools_stats",
            description=(
                "Get statistics for tracked tool calls. Shows total calls, success/error "
                "counts, and average duration per tool."
            ),
            execute=tools_stats,
        ),
    ]
