"""
AgentFS plugin: wires configuration, services and hooks for one project.

    plugin = AgentFSPlugin(directory="/home/user/project", raw_config={"autoMount": True})
    hooks = plugin.hooks

    await hooks.event(LifecycleEvent("session.created", {"info": {"id": "ses_1"}}))
    await hooks.tool_execute_before(call, args)
    await hooks.tool_execute_after(call, result)
    await hooks.tools["kv_get"]({"key": "user:name"}, ToolContext("ses_1"))
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from .config import AgentFSConfig, parse_config
from .hooks.cleanup import ShutdownHandler
from .hooks.path_rewrite import create_path_rewrite_hooks
from .hooks.session_events import create_session_event_handler
from .hooks.tool_tracking import create_tool_tracking_hooks
from .hooks.types import LifecycleEvent, ToolArgs, ToolCallInput, ToolResult
from .services.call_tracker import CallTracker
from .services.mount_service import MountController
from .services.session_registry import Notifier, SessionRegistry, StoreOpener
from .tools.base import AgentTool
from .tools.call_log import create_call_log_tools
from .tools.kv import create_kv_tools

logger = logging.getLogger(__name__)


@dataclass
class PluginHooks:
    """Handlers the host dispatches to."""
    event: Callable[[LifecycleEvent], Awaitable[None]]
    tool_execute_before: Callable[[ToolCallInput, ToolArgs], Awaitable[None]]
    tool_execute_after: Callable[[ToolCallInput, ToolResult], Awaitable[None]]
    tools: dict[str, AgentTool] = field(default_factory=dict)


class AgentFSPlugin:
    """
    Composition root.

    Owns the mount controller, session registry and call tracker for one
    project directory, and exposes them to the host through ``hooks``.
    """

    def __init__(
        self,
        directory: str,
        raw_config: Any = None,
        notifier: Optional[Notifier] = None,
        register_cleanup: bool = True,
        mount_controller: Optional[MountController] = None,
        store_opener: Optional[StoreOpener] = None,
    ) -> None:
        logger.info(f"Plugin initializing for project: {directory}")

        self.directory = directory
        self.config: AgentFSConfig = parse_config(raw_config)
        logger.debug(
            f"Configuration parsed: auto_mount={self.config.auto_mount}, "
            f"tracking={self.config.tool_tracking.enabled}, "
            f"track_all={self.config.tool_tracking.track_all}, "
            f"exclude={self.config.tool_tracking.exclude_tools}"
        )

        self.mount_controller = mount_controller or MountController(self.config)
        self.registry = SessionRegistry(
            self.config,
            self.mount_controller,
            notifier=notifier,
            store_opener=store_opener,
        )
        self.tracker = CallTracker(self.config.tool_tracking, self.registry)
        self.shutdown = ShutdownHandler(self.mount_controller)
        if register_cleanup:
            self.shutdown.register()

        self.hooks = self._build_hooks()
        logger.info(f"Plugin loaded: {len(self.hooks.tools)} tools registered")

    def _build_hooks(self) -> PluginHooks:
        rewrite_args, rewrite_result = create_path_rewrite_hooks(self.registry)
        track_start, track_end = create_tool_tracking_hooks(self.tracker)

        async def tool_execute_before(call: ToolCallInput, output: ToolArgs) -> None:
            # Rewrite first so the call log holds the paths the tool actually used
            rewrite_args(call, output)
            await track_start(call, output)

        async def tool_execute_after(call: ToolCallInput, output: ToolResult) -> None:
            rewrite_result(call, output)
            await track_end(call, output)

        tools = create_kv_tools(self.registry) + create_call_log_tools(self.registry, self.tracker)

        return PluginHooks(
            event=create_session_event_handler(self.registry, self.directory),
            tool_execute_before=tool_execute_before,
            tool_execute_after=tool_execute_after,
            tools={tool.name: tool for tool in tools},
        )
