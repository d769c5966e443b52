"""
Session registry: the table of live sessions and their lifecycle.

Per session id:

    absent -> initializing -> {mounted, mount-failed} -> store-open -> closing -> absent

A failed mount is not terminal. The session continues unsandboxed, the
store is still opened and the mount error is kept as session metadata.

When the mount succeeds the in-process store open is deferred: the FUSE
daemon holds the SQLite lock at startup. The store is opened on first use
through get_store(), which also writes the session metadata held back
until then.
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol

from ..config import AgentFSConfig, get_mount_path, get_store_path
from ..core.schemas import MountInfo, Session, SessionState
from .mount_service import MountController
from .store import AgentStore

logger = logging.getLogger(__name__)

StoreOpener = Callable[[str, str], Awaitable[AgentStore]]

MOUNT_FAILED_TITLE = "AgentFS Mount Failed"
SESSION_FAILED_TITLE = "AgentFS Session Failed"
CLEANUP_FAILED_TITLE = "AgentFS Cleanup Failed"


class Notifier(Protocol):
    """User-visible warning channel provided by the host."""

    def show_error(self, title: str, message: str) -> None: ...


class LoggingNotifier:
    """Notifier used when the host provides none."""

    def show_error(self, title: str, message: str) -> None:
        logger.warning(f"{title}: {message}")


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionRegistry:
    """
    Owns every live Session and drives its lifecycle.

    Exactly one Session exists per id. Concurrent begin triggers for the
    same id are collapsed by the ``_initializing`` guard set.
    """

    def __init__(
        self,
        config: AgentFSConfig,
        mount_controller: MountController,
        notifier: Optional[Notifier] = None,
        store_opener: Optional[StoreOpener] = None,
    ) -> None:
        self._config = config
        self._mounts = mount_controller
        self._notifier = notifier or LoggingNotifier()
        self._open_store: StoreOpener = store_opener or AgentStore.open
        self._sessions: dict[str, Session] = {}
        self._initializing: set[str] = set()
        self._store_locks: dict[str, asyncio.Lock] = {}

    @property
    def config(self) -> AgentFSConfig:
        return self._config

    @property
    def mount_controller(self) -> MountController:
        return self._mounts

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def all_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def is_initializing(self, session_id: str) -> bool:
        return session_id in self._initializing

    def state(self, session_id: str) -> SessionState:
        session = self._sessions.get(session_id)
        if session is None:
            if session_id in self._initializing:
                return SessionState.INITIALIZING
            return SessionState.ABSENT
        return session.state

    # =========================================================================
    # Building blocks
    # =========================================================================

    def create_session_context(self, session_id: str, project_path: str) -> Session:
        """
        Create the Session and MountInfo records without opening the store.

        Returns the existing Session if one is already registered.
        """
        existing = self._sessions.get(session_id)
        if existing is not None:
            return existing

        store_path = get_store_path(self._config, session_id)
        mount_path = get_mount_path(self._config, session_id)

        Path(store_path).parent.mkdir(parents=True, exist_ok=True)
        Path(mount_path).mkdir(parents=True, exist_ok=True)

        session = Session(
            session_id=session_id,
            project_path=project_path,
            mount=MountInfo(
                session_id=session_id,
                project_path=project_path,
                mount_path=mount_path,
                store_path=store_path,
            ),
        )
        self._sessions[session_id] = session
        return session

    async def open_store(self, session_id: str) -> AgentStore:
        """
        Open the store of a registered session. Idempotent.

        Raises:
            KeyError: Unknown session id
            StoreBusyError: Store stayed locked past the retry budget
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Session not found: {session_id}")
        if session.store is not None:
            return session.store

        lock = self._store_locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            if session.store is not None:
                return session.store

            store = await self._open_store(session_id, session.mount.store_path)
            if self._sessions.get(session_id) is not session or session.state == SessionState.CLOSING:
                # Session ended while the store was opening
                await store.close()
                raise KeyError(f"Session ended while opening its store: {session_id}")
            logger.debug(f"Store opened for session {session_id}: {session.mount.store_path}")
            await self._flush_deferred_metadata(session, store)
            session.store = store
            session.state = SessionState.STORE_OPEN

        return store

    async def _flush_deferred_metadata(self, session: Session, store: AgentStore) -> None:
        pending, session.deferred_metadata = session.deferred_metadata, {}
        for key, value in pending.items():
            try:
                await store.kv.set(key, value)
            except Exception as e:
                logger.warning(f"Failed to write {key} for session {session.session_id}: {e}")

    async def get_store(self, session_id: str) -> Optional[AgentStore]:
        """
        Store of a live session, opened on first use.

        Returns None for unknown or closing sessions, and when the store
        cannot be opened (the failure is logged). Never raises.
        """
        session = self._sessions.get(session_id)
        if session is None or session.state == SessionState.CLOSING:
            return None
        if session.store is not None:
            return session.store

        try:
            return await self.open_store(session_id)
        except Exception as e:
            logger.warning(f"Store unavailable for session {session_id}: {e}")
            return None

    async def close_store(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None or session.store is None:
            return
        store, session.store = session.store, None
        await store.close()

    async def close_session(self, session_id: str) -> None:
        """Close the store (if open) and drop the session from the table."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        try:
            await self.close_store(session_id)
        finally:
            self._sessions.pop(session_id, None)
            self._store_locks.pop(session_id, None)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize_session(self, session_id: str, project_path: str, is_new: bool) -> None:
        """
        Bring a new or resumed session up. Never raises.

        Duplicate or overlapping triggers for the same id are ignored.
        Mount and store failures are reported through the notifier.
        """
        if session_id in self._initializing or session_id in self._sessions:
            logger.debug(f"Session {session_id} already exists or is initializing, skipping")
            return

        self._initializing.add(session_id)
        session_type = "new" if is_new else "resumed"
        logger.info(f"Initializing {session_type} session: {session_id} (project={project_path})")

        try:
            session = self.create_session_context(session_id, project_path)
            logger.debug(
                f"Session context created: store={session.mount.store_path}, "
                f"mount={session.mount.mount_path}"
            )

            mount_succeeded = await self._auto_mount(session, project_path)
            timestamp_key = "session:startedAt" if is_new else "session:resumedAt"

            if mount_succeeded:
                session.state = SessionState.MOUNTED
                session.deferred_metadata = {
                    timestamp_key: _now_ms(),
                    "session:projectPath": project_path,
                }
                logger.debug("Deferring in-process store open, the mount process holds the lock")
            else:
                store = await self.open_store(session_id)
                if session.mount.error:
                    await store.kv.set("session:mountError", session.mount.error)
                await store.kv.set(timestamp_key, _now_ms())
                await store.kv.set("session:projectPath", project_path)

            logger.info(f"Session {session_id} initialized ({session_type}, state={session.state.value})")
        except Exception as e:
            logger.error(f"{SESSION_FAILED_TITLE}: {e}")
            self._notifier.show_error(SESSION_FAILED_TITLE, str(e))
        finally:
            self._initializing.discard(session_id)

    async def _auto_mount(self, session: Session, project_path: str) -> bool:
        if not (self._config.auto_mount and self._mounts.is_supported()):
            logger.debug(
                f"Auto-mount skipped (auto_mount={self._config.auto_mount}, "
                f"supported={self._mounts.is_supported()})"
            )
            return False

        try:
            await self._mounts.mount(session.mount, project_path)
        except Exception as e:
            session.mount.error = str(e)
            session.state = SessionState.MOUNT_FAILED
            logger.error(f"{MOUNT_FAILED_TITLE}: {e}")
            self._notifier.show_error(MOUNT_FAILED_TITLE, str(e))
            return False

        logger.info(f"Overlay mounted at {session.mount.mount_path}")
        return True

    async def end_session(self, session_id: str) -> None:
        """
        Tear a session down. Never raises.

        Order: end-time metadata, close store, unmount, remove. Each step
        runs even if an earlier one failed.
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"Session {session_id} not found, nothing to clean up")
            return

        logger.info(f"Session ending: {session_id}")
        session.state = SessionState.CLOSING
        failures: list[str] = []

        if session.store is not None:
            try:
                await session.store.kv.set("session:endedAt", _now_ms())
            except Exception as e:
                failures.append(f"record end time: {e}")

        # The unmount command needs exclusive access to the store file
        try:
            await self.close_store(session_id)
        except Exception as e:
            failures.append(f"close store: {e}")

        try:
            await self._mounts.unmount(session.mount)
        except Exception as e:
            failures.append(f"unmount: {e}")

        self._sessions.pop(session_id, None)
        self._store_locks.pop(session_id, None)

        if failures:
            message = "; ".join(failures)
            logger.error(f"{CLEANUP_FAILED_TITLE}: {message}")
            self._notifier.show_error(CLEANUP_FAILED_TITLE, message)
        else:
            logger.info(f"Session {session_id} cleaned up")
