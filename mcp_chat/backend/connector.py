"""MCP 工具后端连接器。

通过 stdio 启动工具服务器子进程，并提供四个阻塞式操作：
connect / list_tools / invoke / disconnect。

mcp SDK 是异步的，这里用 anyio 的 BlockingPortal 在独立线程上运行事件循环，
整个会话（子进程、读写流、ClientSession）都挂在这个 portal 上，
因此调用方可以像调用普通函数一样使用连接器。同一时间只有一个连接，
所有请求经由同一个 portal 串行发出。
"""

import sys
from contextlib import ExitStack, asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import anyio
from anyio.from_thread import BlockingPortal, start_blocking_portal
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.shared.exceptions import McpError
from mcp.types import CONNECTION_CLOSED, Implementation
from pydantic import ValidationError as PydanticValidationError

from mcp_chat import __version__
from mcp_chat.config.settings import settings
from mcp_chat.domain.exceptions import (
    BackendProtocolError,
    BackendUnreachable,
    ToolExecutionError,
    ValidationError,
)
from mcp_chat.infrastructure.logging.logger import logger

CLIENT_NAME = "mcp-chat"

# 子进程退出或管道关闭时 anyio 流抛出的异常
_CONNECTION_ERRORS = (
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
    BrokenPipeError,
    ConnectionError,
)


def build_server_parameters(target: str) -> StdioServerParameters:
    """根据脚本后缀决定启动命令：.py 用当前解释器，.js 用 node。"""

    if target.endswith(".py"):
        command = sys.executable
    elif target.endswith(".js"):
        command = "node"
    else:
        raise ValidationError(
            code="UNSUPPORTED_SERVER_SCRIPT",
            message="Server script must be a .py or .js file",
            target=target,
        )
    return StdioServerParameters(command=command, args=[target])


class McpBackendConnector:
    """单个 MCP 服务器连接的生命周期管理。"""

    name = "mcp-stdio"

    def __init__(self, cfg=settings):
        self._settings = cfg
        self._stack: Optional[ExitStack] = None
        self._portal: Optional[BlockingPortal] = None
        self._session: Optional[ClientSession] = None
        self.target: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self._session is not None

    def connect(self, target: str) -> None:
        """启动 target 对应的服务器进程并完成 MCP 握手。

        已有连接时会先断开旧连接。启动失败或握手超时抛出 BackendUnreachable。
        """

        params = build_server_parameters(target)
        if self.connected:
            logger.info("Replacing existing backend connection", extra={"extra": {"target": self.target}})
            self.disconnect()

        logger.info("Starting backend", extra={"extra": {"command": params.command, "target": target}})
        stack = ExitStack()
        try:
            portal = stack.enter_context(start_blocking_portal())
            session = stack.enter_context(portal.wrap_async_context_manager(self._open_session(params)))
        except Exception as e:
            self._close_stack(stack)
            logger.error("Backend connection failed", extra={"extra": {"target": target, "error": repr(e)}})
            raise BackendUnreachable(
                code="BACKEND_UNREACHABLE",
                message=f"Failed to connect to backend {target}: {self._describe(e)}",
                target=target,
            ) from e

        self._stack = stack
        self._portal = portal
        self._session = session
        self.target = target
        logger.info("Backend connected", extra={"extra": {"target": target}})

    def list_tools(self) -> List[Dict[str, Any]]:
        """获取后端工具目录，返回原始描述 {name, description, inputSchema} 列表。"""

        session, portal = self._require_session()
        try:
            result = portal.call(session.list_tools)
        except _CONNECTION_ERRORS as e:
            raise self._connection_lost(e) from e
        except McpError as e:
            if e.error.code == CONNECTION_CLOSED:
                raise self._connection_lost(e) from e
            raise BackendProtocolError(
                code="BACKEND_PROTOCOL_ERROR",
                message=f"Invalid tool listing: {self._describe(e)}",
            ) from e
        except PydanticValidationError as e:
            raise BackendProtocolError(
                code="BACKEND_PROTOCOL_ERROR",
                message=f"Invalid tool listing: {self._describe(e)}",
            ) from e

        tools = getattr(result, "tools", None)
        if not isinstance(tools, list):
            raise BackendProtocolError(
                code="BACKEND_PROTOCOL_ERROR",
                message="Tool listing response has no tools list",
            )
        raw_tools = [
            {
                "name": getattr(tool, "name", None),
                "description": getattr(tool, "description", None),
                "inputSchema": getattr(tool, "inputSchema", None),
            }
            for tool in tools
        ]
        logger.info("Listed backend tools", extra={"extra": {"tool_count": len(raw_tools)}})
        return raw_tools

    def invoke(self, name: str, arguments: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """调用一个工具并返回内容块列表。

        后端报告错误（isError 或 JSON-RPC 错误）时抛出 ToolExecutionError；
        连接已断开时抛出 BackendUnreachable。
        """

        session, portal = self._require_session()
        try:
            result = portal.call(session.call_tool, name, dict(arguments))
        except _CONNECTION_ERRORS as e:
            raise self._connection_lost(e) from e
        except McpError as e:
            # 子进程退出时 SDK 以 CONNECTION_CLOSED 结束挂起的请求，这不是工具自身的错误
            if e.error.code == CONNECTION_CLOSED:
                raise self._connection_lost(e) from e
            raise ToolExecutionError(name, self._describe(e)) from e

        blocks = [self._block_to_dict(block) for block in (result.content or [])]
        if result.isError:
            texts = [b.get("text", "") for b in blocks if b.get("type") == "text"]
            raise ToolExecutionError(name, "; ".join(t for t in texts if t) or "tool reported an error")
        return blocks

    def disconnect(self) -> None:
        """释放会话与子进程。未连接时调用不做任何事。"""

        stack = self._stack
        if stack is None:
            return
        self._stack = None
        self._portal = None
        self._session = None
        target, self.target = self.target, None
        self._close_stack(stack)
        logger.info("Backend disconnected", extra={"extra": {"target": target}})

    def __enter__(self) -> "McpBackendConnector":
        return self

    def __exit__(self, *exc_info) -> None:
        self.disconnect()

    # ---- 辅助方法 ----

    @asynccontextmanager
    async def _open_session(self, params: StdioServerParameters) -> AsyncIterator[ClientSession]:
        timeout = self._settings.backend_timeout
        async with stdio_client(params) as (read, write):
            async with ClientSession(
                read,
                write,
                read_timeout_seconds=timedelta(seconds=timeout),
                client_info=Implementation(name=CLIENT_NAME, version=__version__),
            ) as session:
                with anyio.fail_after(timeout):
                    await session.initialize()
                yield session

    def _require_session(self):
        if self._session is None or self._portal is None:
            raise BackendUnreachable(code="BACKEND_NOT_CONNECTED", message="Backend is not connected")
        return self._session, self._portal

    def _connection_lost(self, error: BaseException) -> BackendUnreachable:
        logger.error("Backend connection lost", extra={"extra": {"target": self.target, "error": repr(error)}})
        return BackendUnreachable(
            code="BACKEND_CONNECTION_LOST",
            message=f"Backend connection lost: {self._describe(error)}",
            target=self.target,
        )

    @staticmethod
    def _close_stack(stack: ExitStack) -> None:
        try:
            stack.close()
        except Exception as e:  # noqa: BLE001 - 子进程可能已经退出，关闭失败只记录
            logger.warning("Error while closing backend", extra={"extra": {"error": repr(e)}})

    @staticmethod
    def _block_to_dict(block: Any) -> Dict[str, Any]:
        if hasattr(block, "model_dump"):
            return block.model_dump(mode="json", exclude_none=True)
        return dict(block)

    @staticmethod
    def _describe(error: BaseException) -> str:
        return str(error) or type(error).__name__
