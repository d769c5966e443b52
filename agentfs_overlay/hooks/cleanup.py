"""
Host shutdown cleanup.

Killing a mount process makes the FUSE daemon unmount its overlay, so on
exit or on a termination signal every tracked mount process is killed.
The cleanup runs at most once; afterwards the previously installed signal
handler is invoked so the signal keeps its normal effect.
"""
import atexit
import logging
import os
import signal
from typing import Any, Callable

from ..services.mount_service import MountController

logger = logging.getLogger(__name__)

CLEANUP_SIGNALS = ("SIGTERM", "SIGINT", "SIGHUP")


class ShutdownHandler:
    """Runs MountController.kill_all() once on process exit or termination."""

    def __init__(self, mount_controller: MountController) -> None:
        self._mounts = mount_controller
        self._done = False
        self._registered = False
        self._previous: dict[int, Any] = {}

    @property
    def done(self) -> bool:
        return self._done

    def cleanup(self) -> None:
        if self._done:
            return
        self._done = True
        logger.info("Killing all mount processes...")
        self._mounts.kill_all()
        logger.info("Cleanup complete")

    def register(self) -> None:
        """Install the atexit hook and the signal handlers. Idempotent."""
        if self._registered:
            return
        self._registered = True

        logger.info(f"Registering cleanup handlers (PID: {os.getpid()})")
        atexit.register(self.cleanup)

        for name in CLEANUP_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            try:
                self._previous[signum] = signal.signal(signum, self._handle_signal)
            except ValueError as e:
                # Signal handlers can only be installed from the main thread
                logger.warning(f"Cannot install {name} handler: {e}")

    def _handle_signal(self, signum: int, frame: Any) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, cleaning up...")
        self.cleanup()
        self._chain(signum, frame)

    def _chain(self, signum: int, frame: Any) -> None:
        previous = self._previous.get(signum)
        if previous is signal.SIG_IGN or previous is None:
            return
        if previous is signal.SIG_DFL:
            # Re-deliver with the default disposition
            signal.signal(signum, signal.SIG_DFL)
            os.kill(os.getpid(), signum)
            return
        handler: Callable[[int, Any], Any] = previous
        handler(signum, frame)
