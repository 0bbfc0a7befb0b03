"""交互式会话。

ChatSession 持有一次进程运行期间共享的资源：工具后端连接、工具注册表
和 Orchestrator，并以上下文管理器的方式保证退出时一定断开后端。
一行输入对应一次查询，查询完全结束后才读取下一行。
"""

from typing import Callable, Iterable, Optional

import click

from mcp_chat.agents.orchestrator import ConversationOrchestrator
from mcp_chat.backend.connector import McpBackendConnector
from mcp_chat.domain.exceptions import BusinessError
from mcp_chat.infrastructure.logging.logger import logger
from mcp_chat.providers import create_provider
from mcp_chat.tools.definitions import ToolDescriptor
from mcp_chat.tools.registry import ToolRegistry

QUIT_COMMAND = "quit"


class ChatSession:
    def __init__(
        self,
        connector: Optional[McpBackendConnector] = None,
        orchestrator: Optional[ConversationOrchestrator] = None,
        registry: Optional[ToolRegistry] = None,
        echo: Callable[..., None] = click.echo,
    ):
        self.connector = connector if connector is not None else McpBackendConnector()
        self.orchestrator = orchestrator if orchestrator is not None else ConversationOrchestrator(create_provider())
        self.registry = registry if registry is not None else ToolRegistry()
        self._echo = echo

    def start(self, target: str) -> list[ToolDescriptor]:
        """连接后端并填充工具注册表。失败时异常直接抛给调用方（启动期致命）。"""

        self.connector.connect(target)
        return self.registry.populate(self.connector.list_tools())

    def close(self) -> None:
        self.connector.disconnect()

    def __enter__(self) -> "ChatSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def handle_line(self, line: str) -> bool:
        """处理一行输入，返回 False 表示应当退出循环。"""

        query = line.strip()
        if not query:
            return True
        if query.lower() == QUIT_COMMAND:
            return False
        try:
            answer = self.orchestrator.handle_query(query, self.registry, self.connector)
        except BusinessError as e:
            logger.error("Query failed", extra={"extra": {"code": e.code, "error": e.message}})
            self._echo(f"Error: {e.message}", err=True)
        except Exception as e:  # 查询边界：任何失败只结束本次查询
            logger.exception("Query failed unexpectedly", extra={"extra": {"error": repr(e)}})
            self._echo(f"Error: {e}", err=True)
        else:
            self._echo(f"\nAnswer: {answer}\n")
        return True

    def run(self, lines: Optional[Iterable[str]] = None) -> None:
        """交互循环；lines 为空时从终端逐行读取，遇到 EOF 或 Ctrl-C 结束。"""

        self._echo("\nMCP client started!")
        self._echo(f'Type your question, or "{QUIT_COMMAND}" to exit.')
        source = iter(lines) if lines is not None else self._prompt_lines()
        try:
            for line in source:
                if not self.handle_line(line):
                    break
        except KeyboardInterrupt:
            self._echo("")
        self._echo("Exiting...")

    @staticmethod
    def _prompt_lines() -> Iterable[str]:
        while True:
            try:
                yield click.prompt("Query", prompt_suffix="> ", default="", show_default=False)
            except (EOFError, click.exceptions.Abort):
                return
