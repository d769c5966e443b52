"""
SQLAlchemy ORM models for a session store.

Each session owns one SQLite file with a key-value table and the tool
call log.
"""
import time
from typing import Any, Optional

from sqlalchemy import JSON, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class KVItem(Base):
    """Persistent key-value entry (session metadata, agent memory)."""
    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)

    created_at: Mapped[float] = mapped_column(Float, default=lambda: time.time())
    updated_at: Mapped[float] = mapped_column(
        Float, default=lambda: time.time(), onupdate=lambda: time.time()
    )


class ToolCall(Base):
    """
    Tool call log entry.

    Created as 'pending' when a call begins and updated in place to
    'success' or 'error' when it completes. Timestamps are epoch seconds.
    """
    __tablename__ = "tool_calls"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    parameters: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    result: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)

    started_at: Mapped[float] = mapped_column(Float, default=lambda: time.time())
    completed_at: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
