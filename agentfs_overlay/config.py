"""
Configuration for the AgentFS overlay broker.

Settings come from the host's project config (camelCase keys, e.g.
``autoMount``) or from a YAML file (snake_case keys). Both spellings are
accepted. Missing values fall back to defaults.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

# Default config file, shipped as package data
CONFIG_DIR = Path(__file__).parent / "data"
DEFAULT_CONFIG_PATH = CONFIG_DIR / "agentfs.yaml"

# Environment variable that points at an alternative config file
CONFIG_ENV_VAR = "AGENTFS_CONFIG"


class ToolTrackingConfig(BaseModel):
    """Which tool calls are written to the session call log."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    enabled: bool = Field(default=True, description="Record tool calls at all")
    track_all: bool = Field(
        default=True,
        alias="trackAll",
        description="Record every tool not listed in exclude_tools",
    )
    exclude_tools: list[str] = Field(
        default_factory=list,
        alias="excludeTools",
        description="Tool names never recorded",
    )

    @field_validator("exclude_tools", mode="before")
    @classmethod
    def normalize_exclude_tools(cls, value: list[str] | None) -> list[str]:
        if not value:
            return []
        return [name.strip() for name in value if name and name.strip()]


class AgentFSConfig(BaseModel):
    """Broker configuration."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    store_path: str = Field(
        default=".agentfs/",
        alias="dbPath",
        description="Directory for per-session SQLite stores",
    )
    mount_path: str = Field(
        default="~/.agentfs/mounts/",
        alias="mountPath",
        description="Base directory for overlay mounts",
    )
    auto_mount: bool = Field(
        default=True,
        alias="autoMount",
        description="Mount the overlay when a session starts",
    )
    tool_tracking: ToolTrackingConfig = Field(
        default_factory=ToolTrackingConfig,
        alias="toolTracking",
    )
    cli_binary: str = Field(
        default="agentfs",
        alias="cliBinary",
        description="Name or path of the agentfs CLI",
    )
    mount_settle_seconds: float = Field(
        default=0.5,
        alias="mountSettleSeconds",
        description="Wait before verifying a freshly spawned mount",
    )

    @field_validator("tool_tracking", mode="before")
    @classmethod
    def default_tool_tracking(cls, value: Any) -> Any:
        return {} if value is None else value


def expand_path(path: str) -> str:
    """Expand a leading ``~/`` to the user's home directory."""
    if path.startswith("~/"):
        return str(Path.home() / path[2:])
    return path


def get_store_path(config: AgentFSConfig, session_id: str) -> str:
    """Get the SQLite store file for a session."""
    return str(Path(expand_path(config.store_path)) / f"{session_id}.db")


def get_mount_path(config: AgentFSConfig, session_id: str) -> str:
    """Get the overlay mount directory for a session."""
    return str(Path(expand_path(config.mount_path)) / session_id)


def parse_config(raw: Any) -> AgentFSConfig:
    """
    Build an AgentFSConfig from the host's raw config section.

    Args:
        raw: None, a mapping, or an AgentFSConfig

    Returns:
        Validated configuration

    Raises:
        pydantic.ValidationError: If a value has the wrong type
    """
    if isinstance(raw, AgentFSConfig):
        return raw
    return AgentFSConfig.model_validate(raw or {})


def load_config(config_path: Optional[Path | str] = None) -> AgentFSConfig:
    """
    Load configuration from a YAML file.

    Lookup order: explicit path, $AGENTFS_CONFIG, the bundled data/agentfs.yaml.
    A missing or broken file yields defaults.

    Args:
        config_path: Path to config file (uses default if not specified)

    Returns:
        AgentFSConfig instance
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    config_path = Path(config_path)

    if not config_path.exists():
        logger.warning(f"AgentFS config not found at {config_path}. Using defaults.")
        return AgentFSConfig()

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load AgentFS config from {config_path}: {e}")
        return AgentFSConfig()

    # Allow the settings to live under a top-level "agentfs" key
    if isinstance(data, dict) and isinstance(data.get("agentfs"), dict):
        data = data["agentfs"]

    try:
        return parse_config(data)
    except ValidationError as e:
        logger.error(f"Invalid AgentFS config in {config_path}: {e}")
        return AgentFSConfig()
