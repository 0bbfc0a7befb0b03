"""mcp-chat 顶层包。

命令行聊天客户端：把用户问题交给 OpenAI 兼容的聊天补全接口，
模型请求工具时通过 MCP stdio 协议转发给工具服务器子进程，
再把工具结果交还模型生成最终回答。
"""

__version__ = "0.1.0"

from mcp_chat.agents.orchestrator import ConversationOrchestrator
from mcp_chat.session import ChatSession

__all__ = ["ChatSession", "ConversationOrchestrator", "__version__"]
