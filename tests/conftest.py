"""
Pytest configuration and fixtures for broker tests.

Provides fixtures for:
- Temporary project, store and mount directories
- Broker configuration pointing at those directories
- A fake subprocess factory standing in for the agentfs CLI and mount tools
- A fake mount controller and a recording notifier for registry tests
"""
import sys
from pathlib import Path
from typing import Any, Callable, Optional, Union

import pytest

# Add project root to path before importing project modules
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from agentfs_overlay.config import AgentFSConfig  # noqa: E402
from agentfs_overlay.core.schemas import MountInfo  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "unit: marks tests as unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (real SQLite stores)"
    )


# =============================================================================
# Directories and configuration
# =============================================================================

@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    return tmp_path / "stores"


@pytest.fixture
def mount_base(tmp_path: Path) -> Path:
    return tmp_path / "mounts"


@pytest.fixture
def config(store_dir: Path, mount_base: Path) -> AgentFSConfig:
    """Config with temp directories, auto-mount off and no settle wait."""
    return AgentFSConfig(
        store_path=str(store_dir),
        mount_path=str(mount_base),
        auto_mount=False,
        mount_settle_seconds=0,
    )


@pytest.fixture
def mount_config(config: AgentFSConfig) -> AgentFSConfig:
    return config.model_copy(update={"auto_mount": True})


# =============================================================================
# Fake subprocesses
# =============================================================================

class FakeStream:
    """Pipe double: serves its data in chunks, then EOF."""

    def __init__(self, data: bytes = b"") -> None:
        self._data = data
        self.position = 0

    @property
    def drained(self) -> bool:
        return self.position >= len(self._data)

    async def read(self, n: int = -1) -> bytes:
        if n < 0:
            n = len(self._data) - self.position
        chunk = self._data[self.position:self.position + n]
        self.position += len(chunk)
        return chunk


class FakeProcess:
    """
    Stand-in for asyncio.subprocess.Process.

    ``running=True`` models a long-lived process (returncode stays None
    until it is terminated).
    """

    def __init__(
        self,
        returncode: int = 0,
        stdout: bytes = b"",
        stderr: bytes = b"",
        pid: int = 4242,
        running: bool = False,
    ) -> None:
        self._exit_code = returncode
        self._stdout = stdout
        self._stderr = stderr
        self.returncode: Optional[int] = None if running else returncode
        self.pid = pid
        self.stderr = FakeStream(stderr)
        self.terminated = False

    async def communicate(self) -> tuple[bytes, bytes]:
        self.returncode = self._exit_code
        return self._stdout, self._stderr

    async def wait(self) -> int:
        if self.returncode is None:
            self.returncode = self._exit_code
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15

    def kill(self) -> None:
        self.terminate()


Response = Union[FakeProcess, BaseException, Callable[[], FakeProcess]]


class FakeSubprocessFactory:
    """
    Replacement for asyncio.create_subprocess_exec.

    Responses are keyed by "agentfs <subcommand>" for the agentfs CLI and
    by the program name otherwise ("mount", "fusermount", "umount").
    Unconfigured commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[list[str], dict[str, Any]]] = []
        self.responses: dict[str, Response] = {}

    def set(self, key: str, response: Response) -> None:
        self.responses[key] = response

    @staticmethod
    def key_for(argv: list[str]) -> str:
        if Path(argv[0]).name == "agentfs" and len(argv) > 1:
            return f"agentfs {argv[1]}"
        return Path(argv[0]).name

    def commands(self) -> list[str]:
        return [self.key_for(argv) for argv, _ in self.calls]

    async def __call__(self, *argv: str, **kwargs: Any) -> FakeProcess:
        self.calls.append((list(argv), kwargs))
        response = self.responses.get(self.key_for(list(argv)))
        if response is None:
            return FakeProcess()
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, FakeProcess):
            return response
        return response()


@pytest.fixture
def fake_subprocess() -> FakeSubprocessFactory:
    return FakeSubprocessFactory()


# =============================================================================
# Registry collaborators
# =============================================================================

class FakeMountController:
    """MountController double that records calls and mounts instantly."""

    def __init__(self, supported: bool = True, fail_with: Optional[Exception] = None) -> None:
        self.supported = supported
        self.fail_with = fail_with
        self.mount_calls: list[str] = []
        self.unmount_calls: list[str] = []
        self.events: Optional[list[str]] = None
        self.killed = 0

    def is_supported(self) -> bool:
        return self.supported

    async def mount(self, info: MountInfo, project_path: str) -> None:
        self.mount_calls.append(info.session_id)
        if self.fail_with is not None:
            info.error = str(self.fail_with)
            raise self.fail_with
        info.mounted = True
        info.pid = 1234
        info.error = None

    async def unmount(self, info: MountInfo) -> None:
        self.unmount_calls.append(info.session_id)
        if self.events is not None:
            self.events.append("unmount")
        info.mounted = False
        info.pid = None

    def kill_all(self) -> None:
        self.killed += 1


class RecordingNotifier:
    def __init__(self) -> None:
        self.errors: list[tuple[str, str]] = []

    def show_error(self, title: str, message: str) -> None:
        self.errors.append((title, message))

    def titles(self) -> list[str]:
        return [title for title, _ in self.errors]


@pytest.fixture
def fake_mounts() -> FakeMountController:
    return FakeMountController()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
