"""
Engine helpers for per-session SQLite stores.

The overlay mount process may hold the same SQLite file, so every
connection waits for locks (busy timeout) instead of failing at once.
"""
import logging
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

# How long a connection waits on a locked database before raising
BUSY_TIMEOUT_MS = 5000


class Base(DeclarativeBase):
    """Declarative base for store tables."""


def store_url(path: str | Path) -> str:
    """SQLAlchemy URL for a SQLite store file."""
    return f"sqlite+aiosqlite:///{Path(path)}"


def create_store_engine(path: str | Path, busy_timeout_ms: int = BUSY_TIMEOUT_MS) -> AsyncEngine:
    """
    Create an async engine for a store file with a busy timeout set.

    Args:
        path: SQLite database file
        busy_timeout_ms: Lock wait applied to every new connection

    Returns:
        AsyncEngine bound to the file
    """
    engine = create_async_engine(
        store_url(path),
        echo=False,
        connect_args={"timeout": busy_timeout_ms / 1000, "check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _set_busy_timeout(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_store_schema(engine: AsyncEngine) -> None:
    """Create store tables if they do not exist yet."""
    # Import models to register them with Base.metadata
    from . import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug(f"Store schema ready: {engine.url}")
