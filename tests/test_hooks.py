"""
Tests for host hook adapters: path rewriting, session events, shutdown.
"""
import signal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agentfs_overlay.config import AgentFSConfig
from agentfs_overlay.hooks.cleanup import ShutdownHandler
from agentfs_overlay.hooks.path_rewrite import create_path_rewrite_hooks
from agentfs_overlay.hooks.session_events import create_session_event_handler
from agentfs_overlay.hooks.types import LifecycleEvent, ToolArgs, ToolCallInput, ToolResult
from agentfs_overlay.services.session_registry import SessionRegistry
from conftest import FakeMountController

SID = "ses_X"


@pytest.fixture
def mounted_registry(mount_config: AgentFSConfig, fake_mounts: FakeMountController, project_dir: Path):
    """Registry holding one session whose overlay is marked mounted."""
    registry = SessionRegistry(mount_config, fake_mounts)
    session = registry.create_session_context(SID, str(project_dir))
    session.mount.mounted = True
    return registry


@pytest.fixture
def paths(mounted_registry: SessionRegistry) -> tuple[str, str]:
    session = mounted_registry.get_session(SID)
    return session.project_path, session.mount.mount_path


# =============================================================================
# Path rewrite: before
# =============================================================================

@pytest.mark.unit
class TestRewriteArgs:
    """Tests for the before-hook."""

    def test_file_path_tools(self, mounted_registry, paths) -> None:
        """filePath arguments move into the mount, tool name case-insensitive."""
        project, mount = paths
        before, _ = create_path_rewrite_hooks(mounted_registry)

        for tool in ("read", "Write", "EDIT"):
            args = ToolArgs({"filePath": f"{project}/src/a.py", "content": f"{project}/x"})
            before(ToolCallInput(tool, SID, "c1"), args)

            assert args.args["filePath"] == f"{mount}/src/a.py"
            assert args.args["content"] == f"{project}/x"

    def test_search_tools(self, mounted_registry, paths) -> None:
        """glob/grep rewrite their path argument."""
        project, mount = paths
        before, _ = create_path_rewrite_hooks(mounted_registry)

        args = ToolArgs({"path": project, "pattern": "*.py"})
        before(ToolCallInput("glob", SID, "c1"), args)

        assert args.args == {"path": mount, "pattern": "*.py"}

    def test_bash_command(self, mounted_registry, paths) -> None:
        """Every project path inside a command is rewritten."""
        project, mount = paths
        before, _ = create_path_rewrite_hooks(mounted_registry)

        args = ToolArgs({"command": f"cd {project} && cat '{project}/a.txt' {project}2/b"})
        before(ToolCallInput("bash", SID, "c1"), args)

        assert args.args["command"] == f"cd {mount} && cat '{mount}/a.txt' {project}2/b"

    def test_outside_paths_untouched(self, mounted_registry) -> None:
        """Paths outside the project are left as given."""
        before, _ = create_path_rewrite_hooks(mounted_registry)

        args = ToolArgs({"filePath": "/etc/hosts"})
        before(ToolCallInput("read", SID, "c1"), args)

        assert args.args["filePath"] == "/etc/hosts"

    def test_non_string_and_unknown_tools(self, mounted_registry, paths) -> None:
        """Non-string fields and unlisted tools are skipped."""
        project, _ = paths
        before, _ = create_path_rewrite_hooks(mounted_registry)

        args = ToolArgs({"filePath": 42})
        before(ToolCallInput("read", SID, "c1"), args)
        assert args.args == {"filePath": 42}

        args = ToolArgs({"filePath": f"{project}/a"})
        before(ToolCallInput("webfetch", SID, "c1"), args)
        assert args.args == {"filePath": f"{project}/a"}

    def test_unmounted_session_untouched(self, mounted_registry, paths) -> None:
        """Nothing is rewritten unless the overlay is live."""
        project, _ = paths
        mounted_registry.get_session(SID).mount.mounted = False
        before, _ = create_path_rewrite_hooks(mounted_registry)

        args = ToolArgs({"filePath": f"{project}/a"})
        before(ToolCallInput("read", SID, "c1"), args)

        assert args.args["filePath"] == f"{project}/a"

    def test_auto_mount_off_or_unsupported(self, config, paths, project_dir) -> None:
        """The before-hook is inert without auto-mount or platform support."""
        project, _ = paths
        for cfg, supported in ((config, True), (config.model_copy(update={"auto_mount": True}), False)):
            registry = SessionRegistry(cfg, FakeMountController(supported=supported))
            registry.create_session_context(SID, str(project_dir)).mount.mounted = True
            before, _ = create_path_rewrite_hooks(registry)

            args = ToolArgs({"filePath": f"{project}/a"})
            before(ToolCallInput("read", SID, "c1"), args)

            assert args.args["filePath"] == f"{project}/a"

    def test_unknown_session(self, mounted_registry, paths) -> None:
        """Unknown sessions are ignored."""
        project, _ = paths
        before, _ = create_path_rewrite_hooks(mounted_registry)

        args = ToolArgs({"filePath": f"{project}/a"})
        before(ToolCallInput("read", "other", "c1"), args)

        assert args.args["filePath"] == f"{project}/a"


# =============================================================================
# Path rewrite: after
# =============================================================================

@pytest.mark.unit
class TestRewriteResult:
    """Tests for the after-hook."""

    def test_output_title_metadata(self, mounted_registry, paths) -> None:
        """Mount paths in output, title and metadata map back to the project."""
        project, mount = paths
        _, after = create_path_rewrite_hooks(mounted_registry)

        result = ToolResult(
            title=f"{mount}/poem.txt",
            output=f"Wrote {mount}/poem.txt\nsee ../../.agentfs/mounts/{SID}/poem.txt",
            metadata={"filepath": f"{mount}/poem.txt", "exists": True},
        )
        after(ToolCallInput("write", SID, "c1"), result)

        assert result.title == f"{project}/poem.txt"
        # The mount base in tests is not under .agentfs, so only absolute paths change
        assert result.output.startswith(f"Wrote {project}/poem.txt\n")
        assert result.metadata == {"filepath": f"{project}/poem.txt", "exists": True}

    def test_relative_marker_collapse(self, mount_config, fake_mounts, project_dir) -> None:
        """Relative spellings of a marker-style mount collapse to './'."""
        registry = SessionRegistry(mount_config, fake_mounts)
        session = registry.create_session_context(SID, str(project_dir))
        session.mount.mount_path = f"/home/u/.agentfs/mounts/{SID}"
        session.mount.mounted = True
        _, after = create_path_rewrite_hooks(registry)

        result = ToolResult(title="", output=f"Wrote ../../.agentfs/mounts/{SID}/poem.txt")
        after(ToolCallInput("write", SID, "c1"), result)

        assert result.output == "Wrote ./poem.txt"

    def test_metadata_outside_mount_untouched(self, mounted_registry) -> None:
        """A metadata filepath outside the mount is left as given."""
        _, after = create_path_rewrite_hooks(mounted_registry)

        result = ToolResult(output="ok", metadata={"filepath": "relative/file.txt"})
        after(ToolCallInput("read", SID, "c1"), result)

        assert result.metadata == {"filepath": "relative/file.txt"}

    def test_unmounted_session(self, mounted_registry, paths) -> None:
        """Without a live mount the result is untouched."""
        _, mount = paths
        mounted_registry.get_session(SID).mount.mounted = False
        _, after = create_path_rewrite_hooks(mounted_registry)

        result = ToolResult(title="t", output=f"{mount}/a", metadata=None)
        after(ToolCallInput("read", SID, "c1"), result)

        assert result.output == f"{mount}/a"


# =============================================================================
# Session events
# =============================================================================

@pytest.mark.unit
class TestSessionEvents:
    """Tests for the lifecycle event adapter."""

    @pytest.fixture
    def registry(self) -> MagicMock:
        registry = MagicMock(spec=SessionRegistry)
        registry.initialize_session = AsyncMock()
        registry.end_session = AsyncMock()
        registry.get_session.return_value = None
        registry.is_initializing.return_value = False
        return registry

    @pytest.mark.asyncio
    async def test_created(self, registry) -> None:
        """session.created starts a new session."""
        handler = create_session_event_handler(registry, "/p")

        await handler(LifecycleEvent("session.created", {"info": {"id": "s1"}}))

        registry.initialize_session.assert_awaited_once_with("s1", "/p", is_new=True)

    @pytest.mark.asyncio
    async def test_status_resumes_unknown(self, registry) -> None:
        """session.status for an unknown id resumes it."""
        handler = create_session_event_handler(registry, "/p")

        await handler(LifecycleEvent("session.status", {"sessionID": "s1"}))

        registry.initialize_session.assert_awaited_once_with("s1", "/p", is_new=False)

    @pytest.mark.asyncio
    async def test_status_known_or_initializing(self, registry) -> None:
        """session.status is ignored for live or initializing sessions."""
        handler = create_session_event_handler(registry, "/p")

        registry.get_session.return_value = object()
        await handler(LifecycleEvent("session.status", {"sessionID": "s1"}))

        registry.get_session.return_value = None
        registry.is_initializing.return_value = True
        await handler(LifecycleEvent("session.status", {"sessionID": "s1"}))

        registry.initialize_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deleted(self, registry) -> None:
        """session.deleted ends the session."""
        handler = create_session_event_handler(registry, "/p")

        await handler(LifecycleEvent("session.deleted", {"info": {"id": "s1"}}))

        registry.end_session.assert_awaited_once_with("s1")

    @pytest.mark.asyncio
    async def test_missing_id_and_other_events(self, registry) -> None:
        """Events without an id, or of other types, are ignored."""
        handler = create_session_event_handler(registry, "/p")

        await handler(LifecycleEvent("session.created", {"info": {}}))
        await handler(LifecycleEvent("session.deleted", {}))
        await handler(LifecycleEvent("message.updated", {"sessionID": "s1"}))

        registry.initialize_session.assert_not_awaited()
        registry.end_session.assert_not_awaited()


# =============================================================================
# Shutdown
# =============================================================================

@pytest.mark.unit
class TestShutdownHandler:
    """Tests for ShutdownHandler."""

    def test_cleanup_runs_once(self, fake_mounts: FakeMountController) -> None:
        """Repeated triggers kill mount processes only once."""
        handler = ShutdownHandler(fake_mounts)

        handler.cleanup()
        handler.cleanup()

        assert fake_mounts.killed == 1
        assert handler.done is True

    def test_register_installs_handlers(self, fake_mounts: FakeMountController) -> None:
        """atexit and the termination signals are hooked, once."""
        handler = ShutdownHandler(fake_mounts)

        with patch("agentfs_overlay.hooks.cleanup.atexit.register") as register, \
                patch("agentfs_overlay.hooks.cleanup.signal.signal", return_value=signal.SIG_DFL) as install:
            handler.register()
            handler.register()

        register.assert_called_once_with(handler.cleanup)
        installed = {call.args[0] for call in install.call_args_list}
        assert signal.SIGTERM in installed
        assert signal.SIGINT in installed

    def test_signal_chains_to_previous_handler(self, fake_mounts: FakeMountController) -> None:
        """After cleanup the previously installed handler still runs."""
        previous = MagicMock()
        handler = ShutdownHandler(fake_mounts)

        with patch("agentfs_overlay.hooks.cleanup.atexit.register"), \
                patch("agentfs_overlay.hooks.cleanup.signal.signal", return_value=previous):
            handler.register()

        handler._handle_signal(signal.SIGTERM, None)

        assert fake_mounts.killed == 1
        previous.assert_called_once_with(signal.SIGTERM, None)

    def test_ignored_signal_not_chained(self, fake_mounts: FakeMountController) -> None:
        """A previously ignored signal stays ignored after cleanup."""
        handler = ShutdownHandler(fake_mounts)

        with patch("agentfs_overlay.hooks.cleanup.atexit.register"), \
                patch("agentfs_overlay.hooks.cleanup.signal.signal", return_value=signal.SIG_IGN), \
                patch("agentfs_overlay.hooks.cleanup.os.kill") as kill:
            handler.register()
            handler._handle_signal(signal.SIGTERM, None)

        kill.assert_not_called()
        assert fake_mounts.killed == 1
