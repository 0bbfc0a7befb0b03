"""统一业务异常模型。

所有跨模块抛出的业务级错误都继承自 BusinessError，
便于在会话层（ChatSession）或 CLI 层做统一捕获与用户提示。

分为三组：
- 聊天接口错误：ChatAPIError 及其子类 NetworkError / ApiError / RateLimitError。
- 工具后端错误：BackendUnreachable / BackendProtocolError。
- 单次工具调用错误：ToolExecutionError / MalformedToolArguments。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "BACKEND_UNREACHABLE"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 tool_name、target 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class ChatAPIError(BusinessError):
    """聊天补全接口调用失败的基类，对当前查询是致命的，不做自动重试。"""


class NetworkError(ChatAPIError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(ChatAPIError):
    """第三方 API 返回非 2xx/429 错误，或响应体无法解析时抛出。"""


class RateLimitError(ChatAPIError):
    """Provider 限流错误。"""


class BackendUnreachable(BusinessError):
    """工具后端进程无法启动、握手超时或连接已断开。"""


class BackendProtocolError(BusinessError):
    """工具后端返回的工具列表结构不符合预期。"""


class ToolExecutionError(BusinessError):
    """某个工具在后端执行失败。

    与其他错误不同，它只影响单次工具调用：Orchestrator 会把它转成
    该调用的工具结果文本交还给模型，而不是中止整个查询。
    """

    def __init__(self, tool_name: str, cause: str, code: str = "TOOL_EXECUTION_ERROR"):
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(
            code=code,
            message=f"Tool {tool_name!r} failed: {cause}",
            tool_name=tool_name,
        )


class MalformedToolArguments(ToolExecutionError):
    """模型给出的 arguments 不是合法的 JSON 对象。"""

    def __init__(self, tool_name: str, cause: str):
        super().__init__(tool_name, cause, code="MALFORMED_TOOL_ARGUMENTS")
