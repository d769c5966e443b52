"""
Per-session store: key-value metadata and the tool call log.

Each session owns one SQLite file. The overlay mount process opens the
same file, so opening is retried with exponential backoff while SQLite
reports the database as busy or locked.

Usage:
    store = await AgentStore.open("ses_abc", "/project/.agentfs/ses_abc.db")
    await store.kv.set("session:startedAt", 1700000000000)
    record_id = await store.tools.start("read", {"filePath": "/a.py"})
    await store.tools.success(record_id, {"title": "a.py", "output": "..."})
    await store.close()
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..core.exceptions import StoreBusyError, StoreNotOpenError, TrackingError
from ..core.schemas import KVEntry, ToolCallRecord, ToolCallStatus, ToolStats
from ..db.database import create_session_factory, create_store_engine, init_store_schema
from ..db.models import KVItem, ToolCall

logger = logging.getLogger(__name__)

# Open retry policy for a store contended by the mount process
MAX_OPEN_RETRIES = 5
INITIAL_RETRY_DELAY = 0.1

_BUSY_SIGNATURES = ("database is busy", "database is locked")


def is_busy_error(error: BaseException) -> bool:
    """Check if an exception carries SQLite's busy/locked signature."""
    message = str(error).lower()
    return any(signature in message for signature in _BUSY_SIGNATURES)


def _escape_like(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class KVStore:
    """Key-value table of a session store."""

    def __init__(self, owner: AgentStore) -> None:
        self._owner = owner

    async def get(self, key: str) -> Any:
        async with self._owner.session() as db:
            item = await db.get(KVItem, key)
            return None if item is None else item.value

    async def set(self, key: str, value: Any) -> None:
        async with self._owner.session() as db:
            item = await db.get(KVItem, key)
            if item is None:
                db.add(KVItem(key=key, value=value))
            else:
                item.value = value
                item.updated_at = time.time()
            await db.commit()

    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if a row was removed."""
        async with self._owner.session() as db:
            result = await db.execute(delete(KVItem).where(KVItem.key == key))
            await db.commit()
            return result.rowcount > 0

    async def list(self, prefix: str = "") -> list[KVEntry]:
        """List entries whose key starts with prefix, ordered by key."""
        stmt = select(KVItem).order_by(KVItem.key)
        if prefix:
            stmt = stmt.where(KVItem.key.like(_escape_like(prefix) + "%", escape="\\"))
        async with self._owner.session() as db:
            rows = (await db.execute(stmt)).scalars().all()
            return [KVEntry(key=row.key, value=row.value) for row in rows]


class ToolCallLog:
    """
    Tool call log of a session store.

    A call is started as a pending row and completed in place; record()
    is the single-shot path for calls whose pending row was never created.
    """

    def __init__(self, owner: AgentStore) -> None:
        self._owner = owner

    async def start(self, name: str, parameters: Any = None) -> int:
        """Insert a pending row and return its id."""
        async with self._owner.session() as db:
            row = ToolCall(
                name=name,
                parameters=parameters,
                status=ToolCallStatus.PENDING.value,
                started_at=time.time(),
            )
            db.add(row)
            await db.commit()
            return row.id

    async def _complete(
        self,
        record_id: int,
        status: ToolCallStatus,
        result: Any = None,
        error: Optional[str] = None,
    ) -> None:
        completed_at = time.time()
        async with self._owner.session() as db:
            row = await db.get(ToolCall, record_id)
            if row is None:
                raise TrackingError(f"Tool call record {record_id} not found")
            row.status = status.value
            row.result = result
            row.error = error
            row.completed_at = completed_at
            row.duration_ms = int(round((completed_at - row.started_at) * 1000))
            await db.commit()

    async def success(self, record_id: int, result: Any) -> None:
        await self._complete(record_id, ToolCallStatus.SUCCESS, result=result)

    async def error(self, record_id: int, message: str) -> None:
        await self._complete(record_id, ToolCallStatus.ERROR, error=message)

    async def record(
        self,
        name: str,
        started_at: float,
        completed_at: float,
        parameters: Any = None,
        result: Any = None,
        error: Optional[str] = None,
    ) -> int:
        """Write one complete row in a single step. Returns its id."""
        status = ToolCallStatus.ERROR if error else ToolCallStatus.SUCCESS
        async with self._owner.session() as db:
            row = ToolCall(
                name=name,
                parameters=parameters,
                result=result,
                error=error,
                status=status.value,
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=int(round((completed_at - started_at) * 1000)),
            )
            db.add(row)
            await db.commit()
            return row.id

    async def get(self, record_id: int) -> Optional[ToolCallRecord]:
        async with self._owner.session() as db:
            row = await db.get(ToolCall, record_id)
            return None if row is None else _to_record(row)

    async def get_by_name(self, name: str, limit: int = 20) -> list[ToolCallRecord]:
        """Most recent calls of one tool, newest first."""
        stmt = (
            select(ToolCall)
            .where(ToolCall.name == name)
            .order_by(ToolCall.id.desc())
            .limit(limit)
        )
        async with self._owner.session() as db:
            rows = (await db.execute(stmt)).scalars().all()
            return [_to_record(row) for row in rows]

    async def get_recent(self, offset: int = 0, limit: int = 20) -> list[ToolCallRecord]:
        """Most recent calls of any tool, newest first."""
        stmt = select(ToolCall).order_by(ToolCall.id.desc()).offset(offset).limit(limit)
        async with self._owner.session() as db:
            rows = (await db.execute(stmt)).scalars().all()
            return [_to_record(row) for row in rows]

    async def get_stats(self) -> list[ToolStats]:
        """
        Per-tool aggregates, ordered by call count.

        Pending rows count toward total_calls only; the average duration
        covers completed calls.
        """
        stmt = (
            select(
                ToolCall.name,
                func.count(ToolCall.id),
                func.sum(case((ToolCall.status == ToolCallStatus.SUCCESS.value, 1), else_=0)),
                func.sum(case((ToolCall.status == ToolCallStatus.ERROR.value, 1), else_=0)),
                func.avg(ToolCall.duration_ms),
            )
            .group_by(ToolCall.name)
            .order_by(func.count(ToolCall.id).desc(), ToolCall.name)
        )
        async with self._owner.session() as db:
            rows = (await db.execute(stmt)).all()

        return [
            ToolStats(
                name=name,
                total_calls=total or 0,
                successful=successful or 0,
                failed=failed or 0,
                avg_duration_ms=float(avg or 0.0),
            )
            for name, total, successful, failed, avg in rows
        ]


def _to_record(row: ToolCall) -> ToolCallRecord:
    return ToolCallRecord(
        id=row.id,
        name=row.name,
        parameters=row.parameters,
        result=row.result,
        error=row.error,
        status=ToolCallStatus(row.status),
        started_at=row.started_at,
        completed_at=row.completed_at,
        duration_ms=row.duration_ms,
    )


class AgentStore:
    """Handle to one session's SQLite store."""

    def __init__(self, session_id: str, path: str, engine: AsyncEngine) -> None:
        self.session_id = session_id
        self.path = path
        self._engine: Optional[AsyncEngine] = engine
        self._session_factory: async_sessionmaker[AsyncSession] = create_session_factory(engine)
        self.kv = KVStore(self)
        self.tools = ToolCallLog(self)

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def session(self) -> AsyncSession:
        if self._engine is None:
            raise StoreNotOpenError(f"Store for session {self.session_id} is closed")
        return self._session_factory()

    @classmethod
    async def open(
        cls,
        session_id: str,
        path: str,
        max_retries: int = MAX_OPEN_RETRIES,
        initial_delay: float = INITIAL_RETRY_DELAY,
    ) -> AgentStore:
        """
        Open (creating if needed) the store file for a session.

        Busy/locked errors are retried with exponential backoff.

        Raises:
            StoreBusyError: The database stayed locked for every attempt
        """
        Path(path).parent.mkdir(parents=True, exist_ok=True)

        delay = initial_delay
        attempt = 0
        while True:
            attempt += 1
            engine = create_store_engine(path)
            try:
                await init_store_schema(engine)
            except OperationalError as e:
                await engine.dispose()
                if not is_busy_error(e):
                    raise
                if attempt >= max_retries:
                    raise StoreBusyError(
                        f"Store {path} still busy after {attempt} attempts",
                        path=path,
                        attempts=attempt,
                    ) from e
                logger.warning(
                    f"Store {path} busy (attempt {attempt}/{max_retries}), "
                    f"retrying in {delay * 1000:.0f}ms"
                )
                await asyncio.sleep(delay)
                delay *= 2
                continue

            logger.debug(f"Opened store for session {session_id}: {path}")
            return cls(session_id, path, engine)

    async def close(self) -> None:
        if self._engine is None:
            return
        engine, self._engine = self._engine, None
        await engine.dispose()
        logger.debug(f"Closed store for session {self.session_id}")
