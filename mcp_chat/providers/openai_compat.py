"""OpenAI 兼容 Provider 适配器。

适用于 SiliconFlow、DeepSeek、OpenAI 等提供 chat/completions 端点的服务：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 chat/completions 的请求 JSON（固定 stream=false, n=1）。
3. 调用 HTTP 接口并处理网络/API 异常。
4. 将响应 JSON 解析为统一的 ChatResult / ChatMessage 结构（含工具调用）。
"""

import json
import logging
from typing import Any, Dict, List
from uuid import uuid4

import httpx

from mcp_chat.config.settings import settings
from mcp_chat.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from mcp_chat.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage
from mcp_chat.infrastructure.logging.logger import logger
from mcp_chat.tools.definitions import ToolCall, ToolDescriptor


class OpenAICompatClient:
    """OpenAI 兼容接口客户端实现。"""

    name = "openai"

    def __init__(self, cfg=settings):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = cfg

    def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。

        步骤：
        1. 构造 HTTP 请求 payload。
        2. 发送请求并捕获网络错误/限流/服务端错误。
        3. 使用统一的解析函数构造 ChatResult。
        """

        if not getattr(self._settings, "openai_api_key", None):
            raise ValidationError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set")
        payload = self._build_payload(req)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Chat request payload", extra={"extra": {"payload": payload}})
        base = self._settings.openai_base_url.rstrip("/")
        try:
            with httpx.Client(timeout=self._settings.http_timeout) as client:
                resp = client.post(
                    f"{base}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._settings.openai_api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时、读超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__) from e
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Chat API rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(code="INVALID_RESPONSE", message=f"Response is not JSON: {e}", http_status=502) from e
        if not isinstance(data, dict):
            raise ApiError(code="INVALID_RESPONSE", message="Response is not a JSON object", http_status=502)
        return self._parse_response(data, req)

    def _build_payload(self, req: ChatRequest) -> dict:
        """将 ChatRequest 转成 chat/completions 所需的请求 JSON。"""

        sampling = req.sampling
        payload: Dict[str, Any] = {
            "model": req.model,
            "messages": [self._message_to_payload(m) for m in req.messages],
            "temperature": sampling.temperature,
            "top_p": sampling.top_p,
            "n": 1,
            "stream": False,
            "response_format": {"type": "text"},
        }
        # 非标准或可选参数，未配置时不发送
        if sampling.top_k is not None:
            payload["top_k"] = sampling.top_k
        if sampling.frequency_penalty is not None:
            payload["frequency_penalty"] = sampling.frequency_penalty
        if sampling.max_tokens is not None:
            payload["max_tokens"] = sampling.max_tokens
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
            payload["tool_choice"] = req.tool_choice
        return payload

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        """将原始响应 JSON 解析为统一的 ChatResult，结构不符时抛出 ApiError。"""

        raw_choices = data.get("choices") or []
        if not isinstance(raw_choices, list):
            raise self._invalid("choices is not a list")
        choices: List[ChatChoice] = []
        for i, ch in enumerate(raw_choices):
            if not isinstance(ch, dict):
                raise self._invalid(f"choices[{i}] is not an object")
            msg = ch.get("message") or {}
            if not isinstance(msg, dict):
                raise self._invalid(f"choices[{i}].message is not an object")
            cm = self._build_chat_message(msg)
            choices.append(ChatChoice(index=ch.get("index", i), message=cm, finish_reason=ch.get("finish_reason")))
        usage_raw = data.get("usage") or {}
        usage = None
        if isinstance(usage_raw, dict) and usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=usage, raw=data)

    @staticmethod
    def _serialize_tool(tool: ToolDescriptor) -> Dict[str, Any]:
        """把 ToolDescriptor 转成 function tool 描述，parameters 原样转发。"""

        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
                "strict": False,
            },
        }

    def _build_chat_message(self, payload: Dict[str, Any]) -> ChatMessage:
        """将单条响应 message 转换为 ChatMessage。

        tool_calls 的 arguments 保持原始 JSON 字符串，不在这里解析，
        由 Orchestrator 决定解析失败时如何处理。缺少 id 的调用会生成
        全局唯一的 id，保证多轮对话中 tool_call_id 不重复。
        """

        content = payload.get("content")
        if content is not None and not isinstance(content, str):
            raise self._invalid("message content is not a string")
        raw_calls = payload.get("tool_calls") or []
        if not isinstance(raw_calls, list):
            raise self._invalid("tool_calls is not a list")
        tool_calls: List[ToolCall] = []
        for idx, call in enumerate(raw_calls):
            if not isinstance(call, dict):
                raise self._invalid(f"tool_calls[{idx}] is not an object")
            func = call.get("function") or {}
            if not isinstance(func, dict):
                raise self._invalid(f"tool_calls[{idx}].function is not an object")
            tool_calls.append(
                ToolCall(
                    id=call.get("id") or f"call_{uuid4().hex}",
                    name=func.get("name") or call.get("name") or "",
                    arguments=self._raw_arguments(func.get("arguments")),
                )
            )
        return ChatMessage(
            role=payload.get("role") or "assistant",
            content=content,
            tool_calls=tool_calls or None,
            tool_call_id=payload.get("tool_call_id"),
        )

    @staticmethod
    def _invalid(detail: str) -> ApiError:
        return ApiError(code="INVALID_RESPONSE", message=f"Malformed chat response: {detail}", http_status=502)

    @staticmethod
    def _raw_arguments(raw: Any) -> str:
        """部分兼容接口直接返回对象而非字符串，这里统一为 JSON 字符串。"""

        if raw is None:
            return "{}"
        if isinstance(raw, str):
            return raw
        return json.dumps(raw, ensure_ascii=False)

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role, "content": message.content}
        if message.tool_calls:
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in message.tool_calls
            ]
        if message.tool_call_id:
            payload["tool_call_id"] = message.tool_call_id
        return payload
