"""
Tool call tracking.

Every tracked tool call gets one row in the session's call log:

    begin()  -> pending row inserted in the background, id kept as a future
    end()    -> same row updated in place to success or error

Duplicate begins are ignored, ends without a begin are ignored, and calls
may complete in any order. Store failures are logged and never reach the
tool execution path.
"""
from __future__ import annotations

import asyncio
import copy
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Optional

from ..config import ToolTrackingConfig
from ..core.schemas import INVALID_RECORD_ID, PendingCall

if TYPE_CHECKING:
    from .session_registry import SessionRegistry
    from .store import AgentStore

logger = logging.getLogger(__name__)

# Stored output is cut to this many characters
MAX_OUTPUT_SIZE = 10000

_ERROR_PREFIXES = ("Error:", "error:")


def is_error_output(output: Any) -> bool:
    """
    Classify tool output as an error.

    Structured output (a JSON object) is an error when its ``error`` field
    is truthy. Anything that does not parse as JSON is an error when it
    starts with ``Error:`` or ``error:``.
    """
    if not isinstance(output, str):
        return False

    try:
        parsed = json.loads(output)
    except ValueError:
        return output.lstrip().startswith(_ERROR_PREFIXES)

    if isinstance(parsed, dict):
        return bool(parsed.get("error"))
    return False


class CallTracker:
    """Pending-call table plus the begin/end lifecycle against the store."""

    def __init__(self, config: ToolTrackingConfig, registry: SessionRegistry) -> None:
        self._config = config
        self._registry = registry
        self._pending: dict[tuple[str, str], PendingCall] = {}

    def should_track(self, tool: str) -> bool:
        if not self._config.enabled:
            return False
        if tool in self._config.exclude_tools:
            return False
        return self._config.track_all

    def is_pending(self, session_id: str, call_id: str) -> bool:
        return (session_id, call_id) in self._pending

    def pending_count(self) -> int:
        return len(self._pending)

    async def _store_for(self, session_id: str) -> Optional[AgentStore]:
        # Opens a store deferred by the mount on first use
        return await self._registry.get_store(session_id)

    async def begin(self, session_id: str, call_id: str, tool: str, args: Any = None) -> None:
        """
        Start tracking a call.

        The key is registered before the pending row is written, so a
        duplicate begin arriving meanwhile is suppressed. Does not wait
        for the store.
        """
        if not self.should_track(tool):
            return

        key = (session_id, call_id)
        if key in self._pending:
            logger.debug(f"Duplicate begin for {tool} call {call_id}, ignoring")
            return

        try:
            snapshot = copy.deepcopy(args)
        except Exception as e:
            logger.warning(f"Could not snapshot args for {tool} call {call_id}, recording repr: {e}")
            snapshot = repr(args)

        pending = PendingCall(
            session_id=session_id,
            call_id=call_id,
            tool=tool,
            start_time=time.time(),
            args=snapshot,
        )
        pending.record_id = asyncio.ensure_future(self._create_pending_record(pending))
        self._pending[key] = pending

    async def _create_pending_record(self, pending: PendingCall) -> int:
        store = await self._store_for(pending.session_id)
        if store is None:
            logger.debug(f"No open store for session {pending.session_id}, {pending.tool} not recorded")
            return INVALID_RECORD_ID
        try:
            return await store.tools.start(pending.tool, pending.args)
        except Exception as e:
            logger.error(f"Failed to record tool start for {pending.tool}: {e}")
            return INVALID_RECORD_ID

    async def end(
        self,
        session_id: str,
        call_id: str,
        tool: str,
        title: str = "",
        output: str = "",
        metadata: Any = None,
    ) -> None:
        """Complete a tracked call. No-op if the call was never begun."""
        if not self.should_track(tool):
            return

        pending = self._pending.pop((session_id, call_id), None)
        if pending is None:
            return

        end_time = time.time()
        output = output if isinstance(output, str) else ("" if output is None else str(output))
        failed = is_error_output(output)
        record_id = await pending.record_id if pending.record_id is not None else INVALID_RECORD_ID

        store = await self._store_for(session_id)
        if store is None:
            logger.debug(f"No open store for session {session_id}, {tool} completion not recorded")
            return

        try:
            if record_id != INVALID_RECORD_ID:
                if failed:
                    await store.tools.error(record_id, output)
                else:
                    await store.tools.success(record_id, {
                        "title": title,
                        "output": output[:MAX_OUTPUT_SIZE],
                        "metadata": metadata,
                    })
            else:
                await store.tools.record(
                    tool,
                    pending.start_time,
                    end_time,
                    parameters=pending.args,
                    result=None if failed else {"title": title, "output": output[:MAX_OUTPUT_SIZE]},
                    error=output if failed else None,
                )
        except Exception as e:
            logger.error(f"Failed to record tool completion for {tool}: {e}")

    async def wait_pending(self, session_id: str) -> None:
        """Wait until every begun call of a session has its pending row."""
        futures = [
            pending.record_id
            for pending in self._pending.values()
            if pending.session_id == session_id and pending.record_id is not None
        ]
        if futures:
            await asyncio.gather(*futures, return_exceptions=True)
