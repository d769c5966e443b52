"""
Path rewrite hooks.

Before a tool runs, project paths in its arguments are moved into the
session mount. After it runs, mount paths in its output, title and
metadata are moved back, so the agent only ever sees project paths.
"""
import logging
from typing import Callable

from ..core.path_translator import (
    PathMapping,
    has_string_field,
    rewrite_paths_in_output,
    rewrite_paths_in_string,
    to_mount_path,
)
from ..core.schemas import Session
from ..services.session_registry import SessionRegistry
from .types import ToolArgs, ToolCallInput, ToolResult

logger = logging.getLogger(__name__)

# Path-bearing argument names per tool (lowercase tool names)
PATH_TOOLS: dict[str, list[str]] = {
    "read": ["filePath"],
    "write": ["filePath"],
    "edit": ["filePath"],
    "glob": ["path"],
    "grep": ["path"],
    "bash": ["command"],
}

# Arguments that hold free text rather than a single path
_TEXT_FIELDS = {("bash", "command")}


def _mounted_session(registry: SessionRegistry, session_id: str) -> Session | None:
    session = registry.get_session(session_id)
    if session is None or not session.mount.mounted:
        return None
    return session


def create_path_rewrite_hooks(
    registry: SessionRegistry,
) -> tuple[Callable[[ToolCallInput, ToolArgs], None], Callable[[ToolCallInput, ToolResult], None]]:
    """
    Create the before/after path rewrite hooks.

    Returns:
        (before_hook, after_hook), both synchronous
    """
    config = registry.config
    mounts = registry.mount_controller

    def rewrite_args(call: ToolCallInput, output: ToolArgs) -> None:
        if not (mounts.is_supported() and config.auto_mount):
            return

        session = _mounted_session(registry, call.session_id)
        if session is None:
            return

        tool = call.tool.lower()
        fields = PATH_TOOLS.get(tool)
        if not fields:
            return

        project_path = session.project_path
        mount_path = session.mount.mount_path

        for name in fields:
            value = output.args.get(name)
            if not isinstance(value, str):
                continue

            if (tool, name) in _TEXT_FIELDS:
                rewritten = rewrite_paths_in_string(value, project_path, mount_path)
            else:
                rewritten = to_mount_path(value, project_path, mount_path)

            if rewritten != value:
                logger.info(f"PATH REWRITE: {call.tool}.{name}: {value!r} -> {rewritten!r}")
                output.args[name] = rewritten

    def rewrite_result(call: ToolCallInput, output: ToolResult) -> None:
        session = _mounted_session(registry, call.session_id)
        if session is None:
            return

        project_path = session.project_path
        mount_path = session.mount.mount_path

        if output.output:
            output.output = rewrite_paths_in_output(output.output, mount_path, project_path)
        if output.title:
            output.title = rewrite_paths_in_output(output.title, mount_path, project_path)
        if has_string_field(output.metadata, "filepath"):
            mapping = PathMapping(project_root=project_path, mount_root=mount_path)
            if mapping.matches_mount_path(output.metadata["filepath"]):
                output.metadata["filepath"] = mapping.to_project(output.metadata["filepath"])

    return rewrite_args, rewrite_result
