"""
Path Translator - project <-> mount path translation for overlay sessions.

Every session has two parallel namespaces:

    /home/user/project/src/app.py                      - Project path (what the agent sees)
    /home/user/.agentfs/mounts/<sid>/src/app.py        - Mount path (where tools really run)

Tool arguments are rewritten project -> mount before a tool runs, and tool
output is rewritten mount -> project afterwards, so the overlay stays
invisible to the agent.

MATCHING RULES:
===============

- A prefix only matches on a path boundary: the next character must be a
  separator, whitespace, a quote, or the end of the string.
  /home/user/project2 is never rewritten when translating /home/user/project.
- Paths outside the source root pass through unchanged.
- Path operands are regex-escaped before they are used in a pattern.

All functions here are pure and total: unmatched input is returned as-is,
nothing raises.

USAGE:
======

    mapping = PathMapping(project_root="/home/user/project", mount_root=mount)
    mapping.to_mount("/home/user/project/src/app.py")   # -> <mount>/src/app.py

    rewrite_paths_in_string("cat /home/user/project/a.py", project, mount)
    rewrite_paths_in_output(tool_output, mount, project)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional

# Directory name that anchors session mount paths (<base>/.agentfs/mounts/<sid>)
DEFAULT_MOUNT_MARKER = ".agentfs"

# Characters that may legally follow a path prefix match in free text
_BOUNDARY_LOOKAHEAD = r"(?=/|\s|[\"'`]|$)"


# =============================================================================
# Normalization
# =============================================================================

def normalize_path(path: str) -> str:
    """
    Normalize a path to absolute, slash-rooted form.

    - Empty input and "/" both yield "/"
    - Relative input is treated as rooted ("src/a" -> "/src/a")
    - "." segments are dropped, ".." pops one segment (never above root)
    - Trailing slashes are stripped

    Args:
        path: Any path string

    Returns:
        Normalized absolute path
    """
    if not path or path == "/":
        return "/"

    parts: list[str] = []
    for part in path.split("/"):
        if not part or part == ".":
            continue
        if part == "..":
            if parts:
                parts.pop()
        else:
            parts.append(part)

    return "/" + "/".join(parts)


# =============================================================================
# Directory prefix translation
# =============================================================================

def _translate_prefix(normalized: str, source_root: str, target_root: str) -> str:
    """Move a normalized path from under source_root to under target_root."""
    if source_root == "/":
        if target_root == "/":
            return normalized
        return target_root if normalized == "/" else target_root + normalized

    if normalized == source_root:
        return target_root

    if normalized.startswith(source_root + "/"):
        suffix = normalized[len(source_root):]
        return suffix if target_root == "/" else target_root + suffix

    return normalized


@dataclass(frozen=True)
class PathMapping:
    """
    Bidirectional mapping between a project root and its overlay mount.

    Attributes:
        project_root: Base project directory (agent namespace)
        mount_root: Overlay mount directory (execution namespace)
    """
    project_root: str
    mount_root: str

    def matches_project_path(self, path: str) -> bool:
        """Check if path is the project root or inside it."""
        root = normalize_path(self.project_root)
        normalized = normalize_path(path)
        return root == "/" or normalized == root or normalized.startswith(root + "/")

    def matches_mount_path(self, path: str) -> bool:
        """Check if path is the mount root or inside it."""
        root = normalize_path(self.mount_root)
        normalized = normalize_path(path)
        return root == "/" or normalized == root or normalized.startswith(root + "/")

    def to_mount(self, path: str) -> str:
        return to_mount_path(path, self.project_root, self.mount_root)

    def to_project(self, path: str) -> str:
        return to_project_path(path, self.project_root, self.mount_root)


def to_mount_path(path: str, project_root: str, mount_root: str) -> str:
    """
    Convert a project path to a mount path.

    E.g. /home/user/project/src/file.ts -> /mnt/session/src/file.ts

    Args:
        path: Path in the project namespace
        project_root: Project root directory
        mount_root: Session mount directory

    Returns:
        Normalized mount path, or the normalized input if it lies outside
        the project root
    """
    return _translate_prefix(
        normalize_path(path),
        normalize_path(project_root),
        normalize_path(mount_root),
    )


def to_project_path(path: str, project_root: str, mount_root: str) -> str:
    """
    Convert a mount path back to a project path.

    E.g. /mnt/session/src/file.ts -> /home/user/project/src/file.ts

    Args:
        path: Path in the mount namespace
        project_root: Project root directory
        mount_root: Session mount directory

    Returns:
        Normalized project path, or the normalized input if it lies outside
        the mount root
    """
    return _translate_prefix(
        normalize_path(path),
        normalize_path(mount_root),
        normalize_path(project_root),
    )


# =============================================================================
# In-string rewriting
# =============================================================================

def rewrite_paths_in_string(text: str, from_path: str, to_path: str) -> str:
    """
    Rewrite every boundary-delimited occurrence of from_path in text.

    Used for shell commands, titles and tool output, where paths can appear
    anywhere (quoted, mid-sentence, several times, across lines).

    Args:
        text: Arbitrary text
        from_path: Directory prefix to replace
        to_path: Replacement directory prefix

    Returns:
        Rewritten text
    """
    if not text:
        return text

    source = normalize_path(from_path)
    target = normalize_path(to_path)

    # "/" followed by a boundary would match every separator in the text
    if source == target or source == "/":
        return text

    pattern = re.compile(re.escape(source) + _BOUNDARY_LOOKAHEAD)
    return pattern.sub(lambda _match: target, text)


def extract_session_marker(
    mount_path: str,
    marker: str = DEFAULT_MOUNT_MARKER,
) -> Optional[str]:
    """
    Extract the session-identifying tail of a mount path.

    /home/user/.agentfs/mounts/ses_abc123 -> .agentfs/mounts/ses_abc123

    The marker directory plus the two components after it identify the
    session regardless of the working directory a tool reports from.

    Args:
        mount_path: Absolute session mount path
        marker: Directory name that anchors the mount base

    Returns:
        The marker-relative tail, or None if the marker is absent
    """
    match = re.search(
        r"(?:^|/)(" + re.escape(marker) + r"/[^/]+/[^/]+)",
        mount_path or "",
    )
    if match is None:
        return None
    return match.group(1)


def rewrite_paths_in_output(
    text: str,
    mount_path: str,
    project_path: str,
    marker: str = DEFAULT_MOUNT_MARKER,
) -> str:
    """
    Rewrite mount paths in tool output back to project paths.

    Absolute mount paths are rewritten first. Then any relative spelling of
    the mount directory (../../.agentfs/mounts/<sid>/ or ./.agentfs/mounts/<sid>/)
    collapses to "./", since tools often report paths relative to their
    working directory.

    Args:
        text: Tool output or title
        mount_path: Session mount directory
        project_path: Project root directory
        marker: Directory name that anchors the mount base

    Returns:
        Rewritten text
    """
    if not text:
        return text

    result = rewrite_paths_in_string(text, mount_path, project_path)

    session_marker = extract_session_marker(normalize_path(mount_path), marker)
    if session_marker is None:
        return result

    relative_pattern = re.compile(
        r"(?:(?:\.\./)+|\./)" + re.escape(session_marker) + "/"
    )
    return relative_pattern.sub("./", result)


def has_string_field(obj: Any, key: str) -> bool:
    """Check that obj is a mapping whose value at key is a string."""
    return isinstance(obj, dict) and isinstance(obj.get(key), str)
