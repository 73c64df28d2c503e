import threading

import pytest

from chat_core.agents.orchestrator import EMPTY_REPLY_APOLOGY, TOOL_FALLBACK_PREFIX, ProviderOrchestrator
from chat_core.domain.exceptions import (
    ApiError,
    NetworkError,
    ProviderChainError,
    RateLimitError,
    RequestCancelledError,
    ToolError,
    ValidationError,
)
from chat_core.domain.models import (
    ContentTurn,
    ConversationTurn,
    FunctionCallPart,
    FunctionResponsePart,
    ModelResponse,
    TextPart,
    UnknownPart,
)
from chat_core.infrastructure.storage.memory_store import InMemoryHistoryStore
from chat_core.providers.base import ProviderTier
from chat_core.tools.definitions import ToolDef, ToolParam, ToolSpec
from chat_core.tools.executor import ToolRegistry


class FakeProvider:
    """按顺序返回预设结果；结果是异常时直接抛出。"""

    name = "fake"

    def __init__(self, model_name, script, supports_tools=True):
        self.model_name = model_name
        self.supports_tools = supports_tools
        self._script = list(script)
        self.requests = []

    def invoke(self, req):
        self.requests.append(req)
        item = self._script.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return ModelResponse(provider=self.name, model=self.model_name, parts=[TextPart(item)])
        return ModelResponse(provider=self.name, model=self.model_name, parts=list(item))


def quota():
    return RateLimitError(code="RATE_LIMIT", message="quota exhausted")


def api_error():
    return ApiError(code="API_ERROR", message="server error", http_status=500)


def call(name, **args):
    return [FunctionCallPart(name=name, args=args)]


def lookup_registry(result="東京は晴れ", seen=None):
    def handler(args):
        if seen is not None:
            seen.append(args)
        return result

    spec = ToolSpec(
        ToolDef(
            name="get_weather",
            description="天气",
            params={"location": ToolParam("location", "地点", True, {"type": "string"})},
            usage_hint="问天气时使用",
        ),
        handler,
    )
    return ToolRegistry([spec])


def make(primary, secondary=None, local=None, registry=None, store=None, **kw):
    tiers = [ProviderTier("primary", primary)]
    if secondary is not None:
        tiers.append(ProviderTier("secondary", secondary))
    if local is not None:
        tiers.append(ProviderTier("local", local))
    store = store or InMemoryHistoryStore(max_pairs=10)
    return ProviderOrchestrator(store=store, tiers=tiers, tool_registry=registry, **kw), store


def ask(orch, message="hello", **kw):
    return orch.get_response(
        user_id="u1",
        thread_id="t1",
        username="alice",
        message=message,
        timestamp="2025-04-01 09:00:00",
        system_prompt="SYSTEM",
        **kw,
    )


def test_primary_text_reply_is_persisted():
    primary = FakeProvider("gemini-a", ["hi!"])
    orch, store = make(primary)
    out = ask(orch)
    assert out.text == "hi!"
    assert out.tier == "primary"
    assert out.model_name_used == "gemini-a"
    assert out.persisted
    assert out.elapsed_ms >= 0
    assert store.get("u1", "t1") == [ConversationTurn("user", "hello"), ConversationTurn("model", "hi!")]


def test_prompt_contains_history_and_message():
    primary = FakeProvider("gemini-a", ["first", "second"])
    orch, _ = make(primary)
    ask(orch, message="q1")
    ask(orch, message="q2")
    prompt = primary.requests[1].contents[0].parts[0].text
    assert prompt.startswith("SYSTEM")
    assert "user: q1\nassistant: first" in prompt
    assert prompt.endswith("q2")


def test_primary_quota_falls_to_secondary():
    primary = FakeProvider("gemini-a", [quota()])
    secondary = FakeProvider("gemini-b", ["from secondary"])
    local = FakeProvider("gemma", ["unused"], supports_tools=False)
    orch, store = make(primary, secondary, local)
    out = ask(orch)
    assert out.text == "from secondary"
    assert out.tier == "secondary"
    assert out.model_name_used == "gemini-b"
    assert local.requests == []
    assert len(store.get("u1", "t1")) == 2


def test_primary_quota_without_secondary_goes_local():
    primary = FakeProvider("gemini-a", [quota()])
    local = FakeProvider("gemma", ["local reply"], supports_tools=False)
    orch, _ = make(primary, local=local, registry=lookup_registry())
    out = ask(orch)
    assert out.tier == "local"
    assert out.model_name_used == "gemma"
    # 本地模型不声明工具，提示词里也没有工具说明
    assert local.requests[0].tools is None
    assert "get_weather" not in local.requests[0].contents[0].parts[0].text


def test_primary_other_error_fails_immediately():
    primary = FakeProvider("gemini-a", [api_error()])
    secondary = FakeProvider("gemini-b", ["never"])
    orch, store = make(primary, secondary)
    with pytest.raises(ProviderChainError) as ei:
        ask(orch)
    assert [(a.tier, a.kind) for a in ei.value.attempts] == [("primary", "error")]
    assert secondary.requests == []
    assert store.get("u1", "t1") == []


def test_secondary_any_error_goes_local():
    primary = FakeProvider("gemini-a", [quota()])
    secondary = FakeProvider("gemini-b", [NetworkError(code="NETWORK_ERROR", message="timeout")])
    local = FakeProvider("gemma", ["local"], supports_tools=False)
    orch, _ = make(primary, secondary, local)
    out = ask(orch)
    assert out.tier == "local"


def test_all_tiers_fail():
    primary = FakeProvider("gemini-a", [quota()])
    secondary = FakeProvider("gemini-b", [quota()])
    local = FakeProvider("gemma", [api_error()], supports_tools=False)
    orch, store = make(primary, secondary, local)
    with pytest.raises(ProviderChainError) as ei:
        ask(orch)
    assert [(a.tier, a.model, a.kind) for a in ei.value.attempts] == [
        ("primary", "gemini-a", "quota"),
        ("secondary", "gemini-b", "quota"),
        ("local", "gemma", "error"),
    ]
    assert store.get("u1", "t1") == []


def test_quota_with_nothing_configured_fails():
    orch, _ = make(FakeProvider("gemini-a", [quota()]))
    with pytest.raises(ProviderChainError) as ei:
        ask(orch)
    assert ei.value.attempts[0].kind == "quota"


def test_tool_round_trip():
    seen = []
    primary = FakeProvider("gemini-a", [call("get_weather", location="東京"), "東京は晴れだよ☀️"])
    orch, store = make(primary, registry=lookup_registry(seen=seen))
    out = ask(orch, message="東京の天気は？")
    assert out.text == "東京は晴れだよ☀️"
    assert seen == [{"location": "東京"}]

    first, second = primary.requests
    assert [t.name for t in first.tools] == ["get_weather"]
    assert [c.role for c in second.contents] == ["user", "model", "function"]
    assert second.contents[1].parts == call("get_weather", location="東京")
    assert second.contents[2].parts == [FunctionResponsePart(name="get_weather", content="東京は晴れ")]
    # 只写入一次：用户消息 + 第二轮的最终回复
    assert store.get("u1", "t1") == [
        ConversationTurn("user", "東京の天気は？"),
        ConversationTurn("model", "東京は晴れだよ☀️"),
    ]


def test_tool_result_is_truncated_for_model():
    long_result = "x" * 500
    primary = FakeProvider("gemini-a", [call("get_weather", location="東京"), "ok"])
    orch, _ = make(primary, registry=lookup_registry(result=long_result), tool_result_max_chars=120)
    ask(orch)
    sent = primary.requests[1].contents[2].parts[0]
    assert sent.content == "x" * 120


def test_multiple_calls_in_one_response():
    seen = []
    parts = call("get_weather", location="東京") + call("get_weather", location="大阪")
    primary = FakeProvider("gemini-a", [parts, "両方晴れ"])
    orch, _ = make(primary, registry=lookup_registry(seen=seen))
    out = ask(orch)
    assert out.text == "両方晴れ"
    assert seen == [{"location": "東京"}, {"location": "大阪"}]
    assert len(primary.requests[1].contents[2].parts) == 2


def test_empty_second_turn_uses_tool_result():
    primary = FakeProvider("gemini-a", [call("get_weather", location="東京"), ""])
    orch, store = make(primary, registry=lookup_registry(result="RAW RESULT"))
    out = ask(orch)
    assert out.text.startswith(TOOL_FALLBACK_PREFIX)
    assert "RAW RESULT" in out.text
    assert store.get("u1", "t1")[1].content == out.text


def test_soft_tool_failure_still_completes():
    primary = FakeProvider("gemini-a", [call("get_weather", location="nowhere"), "その場所は見つからなかったよ"])
    orch, store = make(primary, registry=lookup_registry(result="没有找到叫「nowhere」的地点"))
    out = ask(orch)
    assert out.text == "その場所は見つからなかったよ"
    assert out.persisted
    assert len(store.get("u1", "t1")) == 2


def test_unknown_tool_aborts_without_history():
    primary = FakeProvider("gemini-a", [call("launch_rocket")])
    secondary = FakeProvider("gemini-b", ["never"])
    orch, store = make(primary, secondary, registry=lookup_registry())
    with pytest.raises(ToolError) as ei:
        ask(orch)
    assert ei.value.code == "UNKNOWN_TOOL"
    assert secondary.requests == []
    assert store.get("u1", "t1") == []


def test_invalid_tool_arguments_abort():
    primary = FakeProvider("gemini-a", [call("get_weather")])
    orch, store = make(primary, registry=lookup_registry())
    with pytest.raises(ToolError):
        ask(orch)
    assert store.get("u1", "t1") == []


def test_second_turn_quota_moves_to_next_tier():
    primary = FakeProvider("gemini-a", [call("get_weather", location="東京"), quota()])
    secondary = FakeProvider("gemini-b", [call("get_weather", location="東京"), "from b"])
    orch, store = make(primary, secondary, registry=lookup_registry())
    out = ask(orch)
    assert out.text == "from b"
    assert out.model_name_used == "gemini-b"
    assert len(store.get("u1", "t1")) == 2


def test_second_turn_other_error_on_primary_fails():
    primary = FakeProvider("gemini-a", [call("get_weather", location="東京"), api_error()])
    orch, store = make(primary, registry=lookup_registry())
    with pytest.raises(ProviderChainError):
        ask(orch)
    assert store.get("u1", "t1") == []


def test_empty_reply_is_not_persisted():
    primary = FakeProvider("gemini-a", [[]])
    orch, store = make(primary)
    out = ask(orch)
    assert out.text == EMPTY_REPLY_APOLOGY
    assert not out.persisted
    assert store.get("u1", "t1") == []


def test_unknown_parts_are_ignored_but_text_kept():
    primary = FakeProvider("gemini-a", [[UnknownPart(raw={"executableCode": {}}), TextPart("answer")]])
    orch, _ = make(primary)
    assert ask(orch).text == "answer"


def test_history_write_failure_is_not_fatal():
    class BrokenStore(InMemoryHistoryStore):
        def _write(self, key, turns, updated_at):
            raise OSError("disk full")

    primary = FakeProvider("gemini-a", ["hi"])
    orch, _ = make(primary, store=BrokenStore(max_pairs=5))
    out = ask(orch)
    assert out.text == "hi"
    assert not out.persisted


def test_history_read_failure_is_not_fatal():
    class UnreadableStore(InMemoryHistoryStore):
        def _read(self, key):
            raise OSError("cannot read")

    primary = FakeProvider("gemini-a", ["hi"])
    orch, _ = make(primary, store=UnreadableStore(max_pairs=5))
    assert ask(orch).text == "hi"


def test_cancelled_before_start():
    primary = FakeProvider("gemini-a", ["hi"])
    orch, store = make(primary)
    ev = threading.Event()
    ev.set()
    with pytest.raises(RequestCancelledError):
        ask(orch, cancel_event=ev)
    assert primary.requests == []
    assert store.get("u1", "t1") == []


def test_cancelled_during_tool_call():
    ev = threading.Event()

    def handler(args):
        ev.set()
        return "result"

    registry = ToolRegistry(
        [ToolSpec(ToolDef(name="slow", description="slow", params={}), handler)]
    )
    primary = FakeProvider("gemini-a", [call("slow"), "never sent"])
    orch, store = make(primary, registry=registry)
    with pytest.raises(RequestCancelledError):
        ask(orch, cancel_event=ev)
    assert len(primary.requests) == 1
    assert store.get("u1", "t1") == []


def test_cancel_event_is_passed_to_provider_requests():
    ev = threading.Event()
    primary = FakeProvider("gemini-a", [call("get_weather", location="東京"), "晴れです"])
    orch, _ = make(primary, registry=lookup_registry())
    ask(orch, cancel_event=ev)
    assert [r.cancel_event for r in primary.requests] == [ev, ev]


def test_tiers_must_start_with_primary():
    with pytest.raises(ValidationError):
        ProviderOrchestrator(store=InMemoryHistoryStore(max_pairs=1), tiers=[])
    with pytest.raises(ValidationError):
        ProviderOrchestrator(
            store=InMemoryHistoryStore(max_pairs=1),
            tiers=[ProviderTier("secondary", FakeProvider("b", []))],
        )


def test_request_contents_start_with_single_user_turn():
    primary = FakeProvider("gemini-a", ["ok"])
    orch, _ = make(primary, temperature=0.2)
    ask(orch)
    req = primary.requests[0]
    assert len(req.contents) == 1
    assert isinstance(req.contents[0], ContentTurn)
    assert req.contents[0].role == "user"
    assert req.temperature == 0.2
    assert req.tools is None
