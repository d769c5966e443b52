"""
Services package for the AgentFS overlay broker.

Contains the session store, the mount controller, the session registry
and the tool call tracker.
"""
from .call_tracker import CallTracker
from .mount_service import MountController
from .session_registry import LoggingNotifier, SessionRegistry
from .store import AgentStore

__all__ = [
    "AgentStore",
    "CallTracker",
    "LoggingNotifier",
    "MountController",
    "SessionRegistry",
]
