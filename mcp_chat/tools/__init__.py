"""工具描述、调用结构与注册表。"""

from mcp_chat.tools.definitions import ToolCall, ToolDescriptor, ToolResult
from mcp_chat.tools.registry import ToolRegistry

__all__ = ["ToolCall", "ToolDescriptor", "ToolResult", "ToolRegistry"]
