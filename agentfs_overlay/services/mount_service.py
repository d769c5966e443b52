"""
Overlay mount controller.

Drives the external ``agentfs`` CLI that presents a session's copy-on-write
overlay at a mount directory:

    agentfs init <sid> --base <project>    (idempotent, one-shot)
    agentfs mount <sid> <mount_dir>        (long-running FUSE process)

Mount processes are kept in a per-controller process table keyed by
session id so they can be terminated on unmount or at host shutdown.
Their stderr is read continuously by a background task; only the last
STDERR_TAIL_BYTES are kept, for failure messages.

MountInfo.mounted is only set after the mount is verified:
1. the mount process has not exited with a non-zero code
2. the mount directory is readable
3. the mount directory appears in the live mount table (best effort)
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sys
from typing import Any, Optional

from ..config import AgentFSConfig
from ..core.exceptions import MountError, MountUnavailableError, MountVerificationError
from ..core.schemas import MountInfo

logger = logging.getLogger(__name__)

INSTALL_HINT = "Install with: cargo install agentfs-cli"

# Unmount commands, tried in order
PRIMARY_UNMOUNT = ("fusermount", "-u")
SECONDARY_UNMOUNT = ("umount",)

# Bytes of mount process stderr kept for error messages
STDERR_TAIL_BYTES = 8192
STDERR_READ_CHUNK = 65536

# Wait for the stderr drain to reach EOF after the process exited
STDERR_DRAIN_TIMEOUT = 1.0


def build_init_command(session_id: str, base_path: str, binary: str = "agentfs") -> list[str]:
    """Build the argv for ``agentfs init``."""
    return [binary, "init", session_id, "--base", base_path]


def build_mount_command(session_id: str, mount_path: str, binary: str = "agentfs") -> list[str]:
    """Build the argv for ``agentfs mount``."""
    return [binary, "mount", session_id, mount_path]


async def _run_command(argv: list[str], cwd: Optional[str] = None) -> tuple[int, str, str]:
    """Run a command to completion. Returns (exit_code, stdout, stderr)."""
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
    )
    stdout_bytes, stderr_bytes = await process.communicate()
    return (
        process.returncode or 0,
        (stdout_bytes or b"").decode("utf-8", errors="replace"),
        (stderr_bytes or b"").decode("utf-8", errors="replace"),
    )


class MountController:
    """Mounts and unmounts session overlays through the agentfs CLI."""

    def __init__(self, config: AgentFSConfig) -> None:
        self._config = config
        self._processes: dict[str, Any] = {}
        self._stderr_drains: dict[str, asyncio.Task] = {}
        self._stderr_tails: dict[str, bytearray] = {}

    @property
    def binary(self) -> str:
        return self._config.cli_binary

    def is_supported(self) -> bool:
        """Overlay mounts need FUSE, which is only wired up on Linux."""
        return sys.platform.startswith("linux")

    def is_installed(self) -> bool:
        return shutil.which(self.binary) is not None

    def tracked_sessions(self) -> list[str]:
        """Session ids with a live entry in the process table."""
        return list(self._processes)

    async def mount(self, info: MountInfo, project_path: str) -> None:
        """
        Mount the overlay for a session.

        No-op if the session is already mounted.

        Args:
            info: Mount record, updated in place
            project_path: Base directory the overlay layers over

        Raises:
            MountUnavailableError: agentfs CLI not found
            MountError: init failed
            MountVerificationError: mount process died or mount point not live
        """
        if info.mounted:
            return

        if not self.is_installed():
            message = f"AgentFS CLI not found. {INSTALL_HINT}"
            info.error = message
            raise MountUnavailableError(message, session_id=info.session_id)

        try:
            await self._init(info, project_path)
            process = await self._spawn(info, project_path)
        except MountError as e:
            info.error = str(e)
            raise
        except OSError as e:
            info.error = f"Failed to start agentfs: {e}"
            raise MountError(info.error, session_id=info.session_id, reason="SPAWN_FAILED") from e

        await asyncio.sleep(self._config.mount_settle_seconds)

        failure = await self._verify_mount(info.session_id, info.mount_path, process)
        if failure:
            self._discard_process(info.session_id)
            info.error = failure
            logger.error(f"MOUNT FAILED: session={info.session_id}: {failure}")
            raise MountVerificationError(failure, session_id=info.session_id, reason="VERIFY_FAILED")

        info.mounted = True
        info.pid = process.pid
        info.error = None
        logger.info(f"MOUNTED: session={info.session_id} at {info.mount_path} (pid={process.pid})")

    async def _init(self, info: MountInfo, project_path: str) -> None:
        argv = build_init_command(info.session_id, project_path, self.binary)
        logger.debug(f"MOUNT INIT: {' '.join(argv)} (cwd={project_path})")

        exit_code, _, stderr = await _run_command(argv, cwd=project_path)
        if exit_code != 0 and "already exists" not in stderr:
            raise MountError(
                f"Failed to initialize AgentFS: {stderr.strip()}",
                session_id=info.session_id,
                reason="INIT_FAILED",
            )

    async def _spawn(self, info: MountInfo, project_path: str) -> Any:
        argv = build_mount_command(info.session_id, info.mount_path, self.binary)
        logger.debug(f"MOUNT SPAWN: {' '.join(argv)} (cwd={project_path})")

        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
            cwd=project_path,
        )
        self._processes[info.session_id] = process
        if process.stderr is not None:
            tail = bytearray()
            self._stderr_tails[info.session_id] = tail
            self._stderr_drains[info.session_id] = asyncio.ensure_future(
                self._drain_stderr(info.session_id, process.stderr, tail)
            )
        return process

    async def _drain_stderr(self, session_id: str, stream: Any, tail: bytearray) -> None:
        """Read the mount process stderr until EOF, keeping a bounded tail."""
        try:
            while True:
                chunk = await stream.read(STDERR_READ_CHUNK)
                if not chunk:
                    return
                tail.extend(chunk)
                if len(tail) > STDERR_TAIL_BYTES:
                    del tail[:-STDERR_TAIL_BYTES]
        except Exception as e:
            logger.debug(f"Stopped reading mount stderr for session {session_id}: {e}")

    async def _stderr_tail(self, session_id: str) -> str:
        """Stderr tail of an exited mount process, once the drain reached EOF."""
        drain = self._stderr_drains.get(session_id)
        if drain is not None:
            try:
                await asyncio.wait_for(asyncio.shield(drain), STDERR_DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.debug(f"Mount stderr for session {session_id} still open, using partial output")
        return bytes(self._stderr_tails.get(session_id, b"")).decode("utf-8", errors="replace")

    async def _verify_mount(self, session_id: str, mount_path: str, process: Any) -> Optional[str]:
        """Return a failure message, or None if the mount looks live."""
        exit_code = process.returncode
        if exit_code is not None and exit_code != 0:
            stderr = await self._stderr_tail(session_id)
            return f"Mount process exited with code {exit_code}: {stderr.strip() or 'unknown error'}"
        if exit_code == 0:
            # Launcher exited cleanly, the FUSE daemon runs detached
            logger.debug(f"Mount launcher for {mount_path} exited with code 0")

        readable = await asyncio.to_thread(os.access, mount_path, os.R_OK)
        if not readable:
            return f"Mount point not accessible: {mount_path}"

        try:
            _, mount_table, _ = await _run_command(["mount"])
        except OSError as e:
            logger.debug(f"Mount table check unavailable, relying on access check: {e}")
            return None

        if mount_path not in mount_table:
            return f"Mount point exists but is not a FUSE mount: {mount_path}"
        return None

    def _discard_process(self, session_id: str) -> None:
        drain = self._stderr_drains.pop(session_id, None)
        if drain is not None and not drain.done():
            try:
                drain.cancel()
            except RuntimeError:
                # Event loop already closed at interpreter shutdown
                pass
        self._stderr_tails.pop(session_id, None)

        process = self._processes.pop(session_id, None)
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            pass

    async def unmount(self, info: MountInfo) -> None:
        """
        Unmount a session overlay. Best effort, never raises.

        No-op if the session is not mounted. mounted and pid are cleared
        whether or not an unmount command succeeded.
        """
        if not info.mounted:
            return

        self._discard_process(info.session_id)

        if not await self._try_unmount([*PRIMARY_UNMOUNT, info.mount_path]):
            if not await self._try_unmount([*SECONDARY_UNMOUNT, info.mount_path]):
                info.error = f"Failed to unmount {info.mount_path}"
                logger.warning(f"UNMOUNT FAILED: session={info.session_id} at {info.mount_path}")

        info.mounted = False
        info.pid = None
        logger.info(f"UNMOUNTED: session={info.session_id}")

    async def _try_unmount(self, argv: list[str]) -> bool:
        try:
            exit_code, _, stderr = await _run_command(argv)
        except OSError as e:
            logger.debug(f"{argv[0]} unavailable: {e}")
            return False
        if exit_code != 0:
            logger.debug(f"{argv[0]} exited with code {exit_code}: {stderr.strip()}")
            return False
        return True

    def get_mount_status(self, info: MountInfo) -> dict[str, Any]:
        return {
            "mounted": info.mounted,
            "mount_path": info.mount_path,
            "project_path": info.project_path,
            "pid": info.pid,
        }

    def kill_all(self) -> None:
        """Terminate every tracked mount process. Synchronous, for shutdown."""
        for session_id in list(self._processes):
            logger.info(f"Terminating mount process for session {session_id}")
            self._discard_process(session_id)
