import json

import pytest

from mcp_chat.agents.orchestrator import ConversationOrchestrator, OrchestratorConfig
from mcp_chat.domain.exceptions import ApiError, BackendUnreachable, ToolExecutionError
from mcp_chat.domain.models import ChatChoice, ChatMessage, ChatResult, ChatUsage
from mcp_chat.tools.definitions import ToolCall
from mcp_chat.tools.registry import ToolRegistry


FORECAST_SCHEMA = {
    "type": "object",
    "properties": {"latitude": {"type": "number"}, "longitude": {"type": "number"}},
    "required": ["latitude", "longitude"],
}


class FakeProvider:
    """按顺序返回预设的 assistant 消息，并记录每次请求。"""

    name = "fake"

    def __init__(self, *messages):
        self._messages = list(messages)
        self.requests = []

    def chat(self, req):
        self.requests.append(req)
        msg = self._messages.pop(0)
        usage = ChatUsage(prompt_tokens=3, completion_tokens=2, total_tokens=5)
        return ChatResult(provider="fake", model=req.model, choices=[ChatChoice(index=0, message=msg)], usage=usage)


class FakeConnector:
    def __init__(self, results=None, errors=None, events=None):
        self._results = results or {}
        self._errors = errors or {}
        self.events = events if events is not None else []
        self.calls = []

    def invoke(self, name, arguments):
        self.calls.append((name, arguments))
        self.events.append(("invoke", name))
        if name in self._errors:
            raise self._errors[name]
        return self._results.get(name, [{"type": "text", "text": f"{name} ok"}])


def _registry():
    registry = ToolRegistry()
    registry.populate(
        [
            {"name": "get_forecast", "description": "Forecast", "inputSchema": FORECAST_SCHEMA},
            {"name": "get_alerts", "description": "Alerts", "inputSchema": {"type": "object", "properties": {}}},
        ]
    )
    return registry


def _orchestrator(provider, **kw):
    config = OrchestratorConfig(model="test-model", system_prompt="You are a weather assistant.", **kw)
    return ConversationOrchestrator(provider, config)


def _calls(*calls):
    return ChatMessage(
        role="assistant",
        content=None,
        tool_calls=[ToolCall(id=cid, name=name, arguments=args) for cid, name, args in calls],
    )


def _text(content):
    return ChatMessage(role="assistant", content=content)


def test_no_tool_calls_returns_first_answer():
    provider = FakeProvider(_text("Hello there."))
    connector = FakeConnector()
    outcome = _orchestrator(provider).run_query("hi", _registry(), connector)
    assert outcome.answer == "Hello there."
    assert outcome.rounds == 1
    assert len(provider.requests) == 1
    assert connector.calls == []
    first = provider.requests[0]
    assert [m.role for m in first.messages] == ["system", "user"]
    assert first.messages[1].content == "hi"
    assert [t.name for t in first.tools] == ["get_forecast", "get_alerts"]
    assert first.tools[0].parameters == FORECAST_SCHEMA


def test_null_content_returns_empty_string():
    provider = FakeProvider(_text(None))
    assert _orchestrator(provider).handle_query("hi", _registry(), FakeConnector()) == ""


def test_null_content_after_tools_returns_empty_string():
    provider = FakeProvider(_calls(("c1", "get_alerts", "{}")), _text(None))
    assert _orchestrator(provider).handle_query("alerts?", _registry(), FakeConnector()) == ""


def test_transcript_pairs_each_call_in_order():
    provider = FakeProvider(
        _calls(
            ("call_a", "get_forecast", '{"latitude": 40.7, "longitude": -74.0}'),
            ("call_b", "get_alerts", '{"state": "NY"}'),
        ),
        _text("Sunny with no alerts."),
    )
    outcome = _orchestrator(provider).run_query("weather in NYC?", _registry(), FakeConnector())

    transcript = outcome.transcript
    assert [m.role for m in transcript] == ["system", "user", "assistant", "tool", "assistant", "tool"]
    for call_msg, result_msg in [(transcript[2], transcript[3]), (transcript[4], transcript[5])]:
        assert call_msg.content is None
        assert len(call_msg.tool_calls) == 1
        assert result_msg.tool_call_id == call_msg.tool_calls[0].id
    assert [transcript[2].tool_calls[0].id, transcript[4].tool_calls[0].id] == ["call_a", "call_b"]

    # 第二轮提交的正是扩展后的对话记录，且不再声明工具
    second = provider.requests[1]
    assert [m.role for m in second.messages] == [m.role for m in transcript]
    assert not second.tools
    assert outcome.answer == "Sunny with no alerts."


def test_tool_result_content_is_serialized_blocks():
    provider = FakeProvider(_calls(("c1", "get_forecast", '{"latitude": 1, "longitude": 2}')), _text("ok"))
    connector = FakeConnector(results={"get_forecast": [{"type": "text", "text": "Sunny, 22C"}]})
    outcome = _orchestrator(provider).run_query("q", _registry(), connector)
    assert json.loads(outcome.transcript[3].content) == [{"type": "text", "text": "Sunny, 22C"}]


def test_arguments_round_trip_as_numbers():
    provider = FakeProvider(_calls(("c1", "get_forecast", '{"latitude": 37.7, "longitude": -122.4}')), _text("ok"))
    connector = FakeConnector()
    _orchestrator(provider).handle_query("sf weather", _registry(), connector)
    name, args = connector.calls[0]
    assert name == "get_forecast"
    assert args == {"latitude": 37.7, "longitude": -122.4}
    assert isinstance(args["latitude"], float)
    # 回传给接口的 arguments 保持模型原文
    assert provider.requests[1].messages[2].tool_calls[0].arguments == '{"latitude": 37.7, "longitude": -122.4}'


def test_sequential_dispatch_order():
    events = []

    class RecordingTranscript(list):
        def append(self, item):
            events.append(("append", item.role))
            super().append(item)

    provider = FakeProvider(
        _calls(("A", "get_forecast", "{}"), ("B", "get_alerts", "{}")),
        _text("done"),
    )
    orchestrator = _orchestrator(provider)
    orchestrator._initial_messages = lambda query: RecordingTranscript(
        [ChatMessage(role="system", content="s"), ChatMessage(role="user", content=query)]
    )
    connector = FakeConnector(events=events)
    orchestrator.handle_query("q", _registry(), connector)

    assert [name for name, _ in connector.calls] == ["get_forecast", "get_alerts"]
    assert events == [
        ("invoke", "get_forecast"),
        ("append", "assistant"),
        ("append", "tool"),
        ("invoke", "get_alerts"),
        ("append", "assistant"),
        ("append", "tool"),
    ]


def test_tool_failure_is_contained():
    provider = FakeProvider(
        _calls(("A", "get_forecast", "{}"), ("B", "get_alerts", "{}")),
        _text("The forecast service failed, but there are no alerts."),
    )
    connector = FakeConnector(errors={"get_forecast": ToolExecutionError("get_forecast", "upstream 503")})
    outcome = _orchestrator(provider).run_query("q", _registry(), connector)

    assert len(provider.requests) == 2
    assert [name for name, _ in connector.calls] == ["get_forecast", "get_alerts"]
    failed = json.loads(outcome.transcript[3].content)
    assert failed["error"] == "TOOL_EXECUTION_ERROR"
    assert "upstream 503" in failed["message"]
    assert outcome.transcript[3].tool_call_id == "A"
    assert outcome.tool_results[0].is_error
    assert not outcome.tool_results[1].is_error
    assert outcome.answer.startswith("The forecast service failed")


def test_malformed_arguments_skip_invoke():
    provider = FakeProvider(
        _calls(("A", "get_forecast", "{latitude: 40"), ("B", "get_alerts", "[1, 2]")),
        _text("Sorry."),
    )
    connector = FakeConnector()
    outcome = _orchestrator(provider).run_query("q", _registry(), connector)
    assert connector.calls == []
    assert [m.role for m in outcome.transcript[2:]] == ["assistant", "tool", "assistant", "tool"]
    for msg in (outcome.transcript[3], outcome.transcript[5]):
        assert json.loads(msg.content)["error"] == "MALFORMED_TOOL_ARGUMENTS"
    assert len(provider.requests) == 2


def test_empty_arguments_become_empty_object():
    provider = FakeProvider(_calls(("A", "get_alerts", "")), _text("ok"))
    connector = FakeConnector()
    _orchestrator(provider).handle_query("q", _registry(), connector)
    assert connector.calls == [("get_alerts", {})]


def test_backend_unreachable_aborts_query():
    provider = FakeProvider(_calls(("A", "get_forecast", "{}")), _text("never"))
    connector = FakeConnector(
        errors={"get_forecast": BackendUnreachable(code="BACKEND_CONNECTION_LOST", message="gone")}
    )
    with pytest.raises(BackendUnreachable):
        _orchestrator(provider).handle_query("q", _registry(), connector)
    assert len(provider.requests) == 1


def test_chat_error_propagates():
    class FailingProvider:
        name = "failing"

        def chat(self, req):
            raise ApiError(code="API_ERROR", message="bad gateway", http_status=502)

    with pytest.raises(ApiError):
        _orchestrator(FailingProvider()).handle_query("q", _registry(), FakeConnector())


def test_empty_choices_is_api_error():
    class EmptyProvider:
        name = "empty"

        def chat(self, req):
            return ChatResult(provider="empty", model=req.model, choices=[])

    with pytest.raises(ApiError) as exc:
        _orchestrator(EmptyProvider()).handle_query("q", _registry(), FakeConnector())
    assert exc.value.code == "EMPTY_CHOICES"


def test_second_round_tool_calls_are_dropped():
    provider = FakeProvider(
        _calls(("A", "get_forecast", "{}")),
        ChatMessage(
            role="assistant",
            content="Partial answer.",
            tool_calls=[ToolCall(id="B", name="get_alerts", arguments="{}")],
        ),
    )
    connector = FakeConnector()
    outcome = _orchestrator(provider).run_query("q", _registry(), connector)
    assert outcome.answer == "Partial answer."
    assert outcome.rounds == 2
    assert [name for name, _ in connector.calls] == ["get_forecast"]


def test_max_tool_rounds_allows_follow_up_calls():
    provider = FakeProvider(
        _calls(("A", "get_forecast", "{}")),
        _calls(("B", "get_alerts", "{}")),
        _text("All done."),
    )
    connector = FakeConnector()
    outcome = _orchestrator(provider, max_tool_rounds=2).run_query("q", _registry(), connector)
    assert outcome.answer == "All done."
    assert [name for name, _ in connector.calls] == ["get_forecast", "get_alerts"]
    assert [bool(r.tools) for r in provider.requests] == [True, True, False]
    assert len(outcome.transcript) == 2 + 4


def test_empty_registry_sends_no_tools():
    provider = FakeProvider(_text("No tools here."))
    answer = _orchestrator(provider).handle_query("q", ToolRegistry(), FakeConnector())
    assert answer == "No tools here."
    assert not provider.requests[0].tools


def test_default_system_prompt_is_loaded():
    provider = FakeProvider(_text("ok"))
    orchestrator = ConversationOrchestrator(provider, OrchestratorConfig(model="test-model"))
    orchestrator.handle_query("q", _registry(), FakeConnector())
    system = provider.requests[0].messages[0]
    assert system.role == "system"
    assert system.content


def test_weather_end_to_end():
    provider = FakeProvider(
        _calls(("call_1", "get_forecast", '{"latitude": 40.7, "longitude": -74.0}')),
        _text("It's sunny and 22°C."),
    )
    connector = FakeConnector(results={"get_forecast": [{"type": "text", "text": "Sunny, 22C"}]})
    outcome = _orchestrator(provider).run_query(
        "What's the weather at latitude 40.7, longitude -74.0?", _registry(), connector
    )
    assert outcome.answer == "It's sunny and 22°C."
    assert connector.calls == [("get_forecast", {"latitude": 40.7, "longitude": -74.0})]
    pairs = outcome.transcript[2:]
    assert len(pairs) == 2
    assert pairs[0].tool_calls[0].id == pairs[1].tool_call_id == "call_1"
    assert "Sunny, 22C" in pairs[1].content
