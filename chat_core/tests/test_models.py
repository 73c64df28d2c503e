from chat_core.domain.exceptions import ApiError, ProviderChainError, RateLimitError, TierAttempt
from chat_core.domain.models import (
    ConversationTurn,
    FunctionCallPart,
    FunctionResponsePart,
    ModelResponse,
    TextPart,
    UnknownPart,
    normalize_role,
)


def test_normalize_role():
    assert normalize_role("assistant") == "model"
    assert normalize_role("Model") == "model"
    assert normalize_role("bot") == "model"
    assert normalize_role("user") == "user"
    assert normalize_role(None) == "user"


def test_conversation_turn_dict():
    turn = ConversationTurn.from_dict({"role": "assistant", "content": "hi"})
    assert turn == ConversationTurn(role="model", content="hi")
    assert turn.to_dict() == {"role": "model", "content": "hi"}


def test_model_response_helpers():
    resp = ModelResponse(
        provider="fake",
        model="m",
        parts=[
            TextPart("a"),
            FunctionCallPart(name="get_weather", args={"location": "東京"}),
            UnknownPart(raw={"executableCode": {}}),
            TextPart("b"),
        ],
    )
    assert resp.text() == "ab"
    assert [c.name for c in resp.function_calls()] == ["get_weather"]


def test_function_response_wire_shape():
    part = FunctionResponsePart(name="get_weather", content="晴")
    assert part.to_wire() == {"name": "get_weather", "response": {"content": "晴"}}


def test_provider_chain_error_lists_attempts():
    err = ProviderChainError(
        [
            TierAttempt(tier="primary", model="p", kind="quota", error=RateLimitError(code="RATE_LIMIT", message="q")),
            TierAttempt(tier="secondary", model="s", kind="error", error=ApiError(code="API_ERROR", message="boom")),
        ]
    )
    assert err.code == "PROVIDER_CHAIN_FAILED"
    assert err.http_status == 503
    assert "primary(p) quota" in err.message
    assert "secondary(s) error" in err.message
    assert len(err.attempts) == 2
