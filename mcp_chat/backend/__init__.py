"""工具后端（MCP 服务器子进程）连接层。"""

from mcp_chat.backend.connector import McpBackendConnector, build_server_parameters

__all__ = ["McpBackendConnector", "build_server_parameters"]
