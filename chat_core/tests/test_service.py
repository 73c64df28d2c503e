import logging
import tempfile
from pathlib import Path

from chat_core.agents.orchestrator import ProviderOrchestrator
from chat_core.api.service import APOLOGIES, ChatService, build_chat_service, run_chat
from chat_core.config.model_profile import ModelProfile
from chat_core.domain.exceptions import ProviderChainError, RateLimitError
from chat_core.domain.models import ModelResponse, TextPart
from chat_core.infrastructure.storage.memory_store import InMemoryHistoryStore
from chat_core.providers.base import ProviderTier


class EchoProvider:
    name = "fake"
    model_name = "echo-1"
    supports_tools = True

    def __init__(self):
        self.prompts = []

    def invoke(self, req):
        prompt = req.contents[0].parts[0].text
        self.prompts.append(prompt)
        return ModelResponse(provider=self.name, model=self.model_name, parts=[TextPart("echo")])


class QuotaProvider(EchoProvider):
    def invoke(self, req):
        raise RateLimitError(code="RATE_LIMIT", message="quota")


def _service(provider):
    store = InMemoryHistoryStore(max_pairs=5)
    orch = ProviderOrchestrator(store=store, tiers=[ProviderTier("primary", provider)])
    profile = ModelProfile(prompts={"default": "DEFAULT PROMPT", "alice": "ALICE PROMPT"})
    return ChatService(orch, store, profile=profile), store


def test_service_uses_profile_prompt_per_user():
    provider = EchoProvider()
    svc, _ = _service(provider)
    svc.get_response("u1", "t1", "alice", "hi")
    svc.get_response("u2", "t1", "bob", "hi")
    assert provider.prompts[0].startswith("ALICE PROMPT")
    assert provider.prompts[1].startswith("DEFAULT PROMPT")
    # 没传 timestamp 时使用当前时间
    assert "Now is " in provider.prompts[0]


def test_service_explicit_system_prompt_wins():
    provider = EchoProvider()
    svc, _ = _service(provider)
    svc.get_response("u1", "t1", "alice", "hi", timestamp="2025-01-01 00:00:00", system_prompt="CUSTOM")
    assert provider.prompts[0].startswith("CUSTOM")
    assert "Now is 2025-01-01 00:00:00" in provider.prompts[0]


def test_service_reset_operations():
    svc, store = _service(EchoProvider())
    svc.get_response("u1", "t1", "alice", "hi")
    svc.get_response("u2", "t1", "bob", "hi")
    svc.get_response("u1", "t2", "alice", "hi")
    svc.reset_history("u1", "t1")
    assert store.get("u1", "t1") == []
    assert len(store.get("u2", "t1")) == 2
    svc.reset_thread("t1")
    assert store.get("u2", "t1") == []
    assert len(store.get("u1", "t2")) == 2


def test_run_chat_success():
    svc, _ = _service(EchoProvider())
    result = run_chat("u1", "t1", "alice", "hi", service=svc)
    assert result["ok"] is True
    assert result["text"] == "echo"
    assert result["model"] == "echo-1"
    assert result["tier"] == "primary"


def test_run_chat_converts_failures_to_apology():
    svc, store = _service(QuotaProvider())
    result = run_chat("u1", "t1", "alice", "hi", service=svc)
    assert result["ok"] is False
    assert result["error_code"] == "PROVIDER_CHAIN_FAILED"
    assert result["text"] == APOLOGIES[ProviderChainError]
    assert store.get("u1", "t1") == []


def test_build_chat_service_from_settings():
    with tempfile.TemporaryDirectory() as d:

        class Cfg:
            primary_provider = "gemini"
            primary_model = "gemini-2.0-flash"
            secondary_provider = "gemini"
            secondary_model = "gemini-1.5-flash"
            secondary_enabled = True
            local_fallback_enabled = True
            ollama_model = "gemma3"
            gemini_api_key = "test-key-123456"
            http_timeout = 1.0
            temperature = 0.7
            history_backend = "sqlite"
            history_db_path = str(Path(d) / "data")
            storage_root = str(Path(d) / ".storage")
            max_history_pairs = 3
            tools_enabled = True
            tool_timeout = 2.0
            tool_result_max_chars = 1800
            url_reader_max_chars = 5000
            zutool_base_url = "https://zutool.jp/api"
            otenki_asp_url = "https://example.com/{city_code}.json"
            model_profile_path = str(Path(d) / "missing.yaml")
            log_dir = str(Path(d) / "logs")
            log_level = "INFO"
            log_redact_content = False

        logger = logging.getLogger("chat_core.test_build_service")
        svc = build_chat_service(Cfg(), logger=logger)
        assert isinstance(svc, ChatService)
        assert svc.profile.prompts["default"]
        tiers = svc._orchestrator.tiers
        assert [t.tier for t in tiers] == ["primary", "secondary", "local"]
        svc.close()
