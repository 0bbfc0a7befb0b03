"""统一的对话与结果数据模型。

本模块定义了 Orchestrator 与 Provider 之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant/tool）。
- SamplingParams: 采样参数（温度、top_p 等），属于配置而不是核心逻辑。
- ChatRequest: 发给聊天补全接口的完整请求。
- ChatResult: 从 Provider 解析后的统一响应结果。

Provider 适配器（如 OpenAICompatClient）只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, List, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from mcp_chat.tools.definitions import ToolCall, ToolDescriptor


# LLM 消息角色类型（与 OpenAI 兼容接口的 role 字段对应）
Role = Literal["system", "user", "assistant", "tool"]


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    - role: 消息角色。
    - content: 文本内容；assistant 消息仅用于承载工具调用时为 None。
    - tool_calls: 仅出现在 assistant 消息上，按模型给出的顺序保存工具调用。
    - tool_call_id: 仅出现在 tool 消息上，关联产生该结果的那次调用。
    """

    role: Role
    content: Optional[str]
    tool_calls: Optional[List["ToolCall"]] = None
    tool_call_id: Optional[str] = None


@dataclass
class SamplingParams:
    """聊天补全请求的采样参数。"""

    temperature: float = 0.7
    top_p: float = 0.7
    top_k: Optional[int] = 50
    frequency_penalty: Optional[float] = 0.5
    max_tokens: Optional[int] = 512

    @classmethod
    def from_settings(cls, cfg) -> "SamplingParams":
        return cls(
            temperature=cfg.temperature,
            top_p=cfg.top_p,
            top_k=cfg.top_k,
            frequency_penalty=cfg.frequency_penalty,
            max_tokens=cfg.max_tokens,
        )


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    tools 为空（None 或空列表）时不向接口声明任何工具，
    用于要求模型基于工具结果直接给出最终回答的那一轮。
    """

    model: str
    messages: List[ChatMessage]
    sampling: SamplingParams = field(default_factory=SamplingParams)
    tools: Optional[List["ToolDescriptor"]] = None
    tool_choice: Literal["auto", "none", "required"] = "auto"


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（请求固定 n=1，通常只有 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次对话调用的最终结果。

    - provider: Provider 名（如 "openai"）。
    - model: 实际请求的模型 ID。
    - choices: 一个或多个候选回答。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None
