from .base import AgentTool, ToolContext
from .call_log import create_call_log_tools
from .kv import create_kv_tools

__all__ = ["AgentTool", "ToolContext", "create_call_log_tools", "create_kv_tools"]
