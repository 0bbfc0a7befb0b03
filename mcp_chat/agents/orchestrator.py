"""对话编排核心模块。

一次用户查询的完整流程：

1. 构造初始消息：system 提示词 + 用户问题。
2. 携带工具声明调用聊天接口。
3. 若模型没有请求工具，直接返回回答文本。
4. 否则按模型给出的顺序逐个分发工具调用，每个调用向对话记录追加
   一对消息：只含这一次调用的 assistant 消息 + 对应的 tool 结果消息。
5. 不带工具声明再次调用聊天接口，返回最终回答文本。

max_tool_rounds 大于 1 时，第 2~4 步最多重复该轮数，之后一轮不再声明工具。
对话记录只在单次查询内存在，查询之间不保留历史。
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol
from uuid import uuid4

from mcp_chat.config.settings import settings
from mcp_chat.domain.exceptions import ApiError, MalformedToolArguments, ToolExecutionError
from mcp_chat.domain.models import ChatMessage, ChatRequest, ChatResult, SamplingParams
from mcp_chat.infrastructure.logging.logger import ContextLogger, bind
from mcp_chat.prompts import load_system_prompt
from mcp_chat.providers.base import ProviderClient
from mcp_chat.tools.definitions import ToolCall, ToolDescriptor, ToolResult
from mcp_chat.tools.registry import ToolRegistry


class ToolInvoker(Protocol):
    """Orchestrator 对工具后端的最小依赖。"""

    def invoke(self, name: str, arguments: Dict[str, Any]) -> List[Dict[str, Any]]:
        ...


@dataclass
class OrchestratorConfig:
    model: str
    sampling: SamplingParams = field(default_factory=SamplingParams)
    max_tool_rounds: int = 1  # 声明工具的轮数，之后一轮只生成最终回答
    system_prompt: Optional[str] = None

    @classmethod
    def from_settings(cls, cfg=settings) -> "OrchestratorConfig":
        return cls(
            model=cfg.openai_model,
            sampling=SamplingParams.from_settings(cfg),
            max_tool_rounds=cfg.max_tool_rounds,
        )


@dataclass
class QueryOutcome:
    """一次查询的结果：最终回答与完整对话记录。"""

    answer: str
    transcript: List[ChatMessage]
    rounds: int
    tool_results: List[ToolResult] = field(default_factory=list)


class ConversationOrchestrator:
    def __init__(self, provider_client: ProviderClient, config: Optional[OrchestratorConfig] = None):
        self._provider_client = provider_client
        self._config = config or OrchestratorConfig.from_settings()

    def handle_query(self, query: str, registry: ToolRegistry, connector: ToolInvoker) -> str:
        """处理一次查询并返回最终回答文本（模型未给出文本时为空字符串）。"""

        return self.run_query(query, registry, connector).answer

    def run_query(self, query: str, registry: ToolRegistry, connector: ToolInvoker) -> QueryOutcome:
        """执行查询的全部轮次，同时返回对话记录，便于调用方检查。

        聊天接口错误与后端断连会直接向上抛出；单个工具调用失败则
        作为该调用的结果交还给模型。
        """


        start_time = time.time()
        log = bind(trace_id=f"tr-{uuid4().hex}")
        log.info("Handling query", extra={"extra": {"query": query}})

        messages = self._initial_messages(query)
        tools = registry.snapshot()
        tool_results: List[ToolResult] = []
        max_rounds = self._config.max_tool_rounds

        round_num = 0
        while True:
            round_num += 1
            declare_tools = round_num <= max_rounds and bool(tools)
            result = self._chat(messages, tools if declare_tools else None, round_num, log)
            assistant_msg = result.choices[0].message

            if not assistant_msg.tool_calls:
                break
            if not declare_tools:
                # 最后一轮未声明工具，模型仍请求调用时只保留文本
                log.warning(
                    "Dropping tool calls from final round",
                    extra={
                        "extra": {
                            "round": round_num,
                            "tool_names": [call.name for call in assistant_msg.tool_calls],
                        }
                    },
                )
                break

            log.info(
                "Executing tool calls",
                extra={"extra": {"round": round_num, "call_count": len(assistant_msg.tool_calls)}},
            )
            for tool_call in assistant_msg.tool_calls:
                tool_result = self._dispatch(tool_call, connector, log)
                tool_results.append(tool_result)
                messages.append(ChatMessage(role="assistant", content=None, tool_calls=[tool_call]))
                messages.append(
                    ChatMessage(role="tool", content=tool_result.to_text(), tool_call_id=tool_call.id)
                )

        answer = assistant_msg.content or ""
        log.info(
            "Completed query",
            extra={
                "extra": {
                    "rounds": round_num,
                    "tool_calls": len(tool_results),
                    "elapsed_seconds": round(time.time() - start_time, 2),
                }
            },
        )
        return QueryOutcome(answer=answer, transcript=messages, rounds=round_num, tool_results=tool_results)

    def _initial_messages(self, query: str) -> List[ChatMessage]:
        system_prompt = self._config.system_prompt or load_system_prompt()
        return [
            ChatMessage(role="system", content=system_prompt),
            ChatMessage(role="user", content=query),
        ]

    def _chat(
        self,
        messages: List[ChatMessage],
        tools: Optional[List[ToolDescriptor]],
        round_num: int,
        log: ContextLogger,
    ) -> ChatResult:
        req = ChatRequest(
            model=self._config.model,
            # 复制一份，后续追加不影响已发出的请求
            messages=list(messages),
            sampling=self._config.sampling,
            tools=tools,
            tool_choice="auto",
        )
        log.info(
            "Calling provider",
            extra={
                "extra": {
                    "round": round_num,
                    "model": self._config.model,
                    "message_count": len(messages),
                    "tool_count": len(tools or []),
                }
            },
        )
        result = self._provider_client.chat(req)
        if not result.choices:
            raise ApiError(code="EMPTY_CHOICES", message="Chat API returned no choices", http_status=502)
        if result.usage:
            log.info(
                "Token usage",
                extra={
                    "extra": {
                        "prompt_tokens": result.usage.prompt_tokens,
                        "completion_tokens": result.usage.completion_tokens,
                        "total_tokens": result.usage.total_tokens,
                    }
                },
            )
        return result

    def _dispatch(self, tool_call: ToolCall, connector: ToolInvoker, log: ContextLogger) -> ToolResult:
        """执行单个工具调用，工具级错误转成失败结果，其余错误向上抛出。"""

        log.info(
            "Tool call received",
            extra={
                "extra": {
                    "tool_name": tool_call.name,
                    "tool_call_id": tool_call.id,
                    "tool_args": tool_call.arguments,
                }
            },
        )
        try:
            arguments = self._parse_arguments(tool_call)
            blocks = connector.invoke(tool_call.name, arguments)
        except ToolExecutionError as e:
            log.error(
                "Tool execution failed",
                extra={"extra": {"tool_call_id": tool_call.id, "code": e.code, "error": e.cause}},
            )
            return ToolResult.failure(tool_call.id, e.code, e.message)

        tool_result = ToolResult(call_id=tool_call.id, content=blocks)
        log.info(
            "Tool execution finished",
            extra={"extra": {"tool_call_id": tool_call.id, "result_preview": tool_result.to_text()[:200]}},
        )
        return tool_result

    @staticmethod
    def _parse_arguments(tool_call: ToolCall) -> Dict[str, Any]:
        raw = tool_call.arguments
        if not raw or not raw.strip():
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedToolArguments(tool_call.name, f"arguments are not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise MalformedToolArguments(tool_call.name, "arguments must be a JSON object")
        return parsed
