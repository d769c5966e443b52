"""
Session lifecycle event adapter.

    session.created  -> initialize (new)
    session.status   -> initialize (resumed) if the id is unknown
    session.deleted  -> end
"""
import logging
from typing import Awaitable, Callable

from ..services.session_registry import SessionRegistry
from .types import LifecycleEvent

logger = logging.getLogger(__name__)

SESSION_CREATED = "session.created"
SESSION_STATUS = "session.status"
SESSION_DELETED = "session.deleted"


def create_session_event_handler(
    registry: SessionRegistry,
    project_path: str,
) -> Callable[[LifecycleEvent], Awaitable[None]]:
    """
    Create the host event handler bound to a registry.

    Args:
        registry: Session registry to drive
        project_path: Project root every session overlays

    Returns:
        Async handler taking a LifecycleEvent
    """

    async def handle_event(event: LifecycleEvent) -> None:
        logger.debug(f"Event received: {event.type}")

        session_id = event.session_id()
        if not session_id:
            return

        if event.type == SESSION_CREATED:
            await registry.initialize_session(session_id, project_path, is_new=True)
        elif event.type == SESSION_STATUS:
            # Host restarted with an existing session
            if registry.get_session(session_id) is None and not registry.is_initializing(session_id):
                logger.info(f"Status for uninitialized session, resuming: {session_id}")
                await registry.initialize_session(session_id, project_path, is_new=False)
        elif event.type == SESSION_DELETED:
            await registry.end_session(session_id)

    return handle_event
