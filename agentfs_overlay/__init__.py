"""
AgentFS overlay broker.

Session-scoped copy-on-write overlay mounts for an AI coding agent, with
transparent project <-> mount path translation and tool call tracking.
"""
from .config import AgentFSConfig, load_config, parse_config
from .plugin import AgentFSPlugin, PluginHooks

__version__ = "0.1.0"

__all__ = [
    "AgentFSConfig",
    "AgentFSPlugin",
    "PluginHooks",
    "load_config",
    "parse_config",
]
