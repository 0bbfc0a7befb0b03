"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将后端提供的工具列表暴露给 LLM（ToolDescriptor）。
- 在 Orchestrator 中保存和分发模型触发的工具调用（ToolCall / ToolResult）。
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class ToolDescriptor:
    """一个可供 LLM 调用的工具定义。

    parameters 是后端声明的 JSON Schema，原样转发给模型。
    """

    name: str
    description: str
    parameters: Dict[str, Any]


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求。

    arguments 保留模型返回的原始 JSON 字符串，回传给接口时原样转发，
    由 Orchestrator 在分发前解析。
    """

    id: str
    name: str
    arguments: str


@dataclass
class ToolResult:
    """单次工具调用的结果（成功或失败两种形态）。

    - content: 后端返回的内容块，例如 [{"type": "text", "text": "..."}]。
    - is_error: 为 True 时 content 是描述失败原因的单个文本块。
    """

    call_id: str
    content: List[Dict[str, Any]] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def failure(cls, call_id: str, code: str, message: str) -> "ToolResult":
        text = json.dumps({"error": code, "message": message}, ensure_ascii=False)
        return cls(call_id=call_id, content=[{"type": "text", "text": text}], is_error=True)

    def to_text(self) -> str:
        """序列化为 tool 消息的 content。"""

        if self.is_error and len(self.content) == 1:
            return self.content[0].get("text", "")
        return json.dumps(self.content, ensure_ascii=False)
