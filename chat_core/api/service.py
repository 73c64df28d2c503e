"""对外 API 服务模块。

提供简化的函数接口供传输层（聊天机器人、命令行等）调用。
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Optional

from chat_core.agents.orchestrator import ProviderOrchestrator
from chat_core.config.model_profile import ModelProfile, load_model_profile_or_default
from chat_core.config.settings import settings
from chat_core.domain.exceptions import BusinessError, ProviderChainError, RequestCancelledError, ToolError
from chat_core.domain.history import HistoryStore
from chat_core.domain.models import InvocationOutcome
from chat_core.infrastructure.logging.logger import component_logger, setup_logger
from chat_core.infrastructure.storage import create_history_store
from chat_core.providers import build_provider_tiers
from chat_core.tools.executor import default_registry

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# 出错时返回给用户的一句话，按错误类型区分
APOLOGIES = {
    ProviderChainError: "现在所有模型都暂时不可用，请稍后再试🙏",
    ToolError: "处理工具调用时出了点问题，没能完成这次回复，抱歉🙏",
    RequestCancelledError: "这次请求已取消。",
}
DEFAULT_APOLOGY = "抱歉，生成回复时出错了，请稍后再试🙏"


class ChatService:
    """编排器 + 历史存储 + 人设 profile 的组合门面。"""

    def __init__(
        self,
        orchestrator: ProviderOrchestrator,
        store: HistoryStore,
        profile: Optional[ModelProfile] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._orchestrator = orchestrator
        self._store = store
        self._profile = profile or ModelProfile()
        self._logger = logger or component_logger("service")

    @property
    def profile(self) -> ModelProfile:
        return self._profile

    def get_response(
        self,
        user_id: str,
        thread_id: str,
        username: str,
        message: str,
        timestamp: Optional[str] = None,
        system_prompt: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> InvocationOutcome:
        """system_prompt 为空时使用 profile 中该用户的提示词。"""

        prompt = system_prompt if system_prompt is not None else self._profile.prompt_for(username)
        return self._orchestrator.get_response(
            user_id=user_id,
            thread_id=thread_id,
            username=username,
            message=message,
            timestamp=timestamp or datetime.now().strftime(TIMESTAMP_FORMAT),
            system_prompt=prompt,
            cancel_event=cancel_event,
        )

    def reset_history(self, user_id: str, thread_id: str) -> None:
        self._store.clear(user_id, thread_id)
        self._logger.info("Cleared history", extra={"extra": {"user_id": user_id, "thread_id": thread_id}})

    def reset_thread(self, thread_id: str) -> None:
        self._store.clear_all_by_thread_id(thread_id)
        self._logger.info("Cleared thread history", extra={"extra": {"thread_id": thread_id}})

    def close(self) -> None:
        self._store.close()


def build_chat_service(cfg=None, logger: Optional[logging.Logger] = None) -> ChatService:
    """按配置装配：日志 → 历史存储 → 工具 → 回退链 → 编排器。"""

    cfg = cfg or settings
    root_logger = logger or setup_logger(cfg)
    store = create_history_store(cfg, logger=component_logger("history", root_logger))
    registry = default_registry(cfg, logger=component_logger("tools", root_logger)) if cfg.tools_enabled else None
    tiers = build_provider_tiers(cfg, logger=component_logger("providers", root_logger))
    orchestrator = ProviderOrchestrator(
        store=store,
        tiers=tiers,
        tool_registry=registry,
        tool_result_max_chars=cfg.tool_result_max_chars,
        temperature=cfg.temperature,
        logger=component_logger("orchestrator", root_logger),
    )
    profile = load_model_profile_or_default(cfg.model_profile_path)
    root_logger.info(
        "Chat service ready",
        extra={"extra": {"tiers": [t.tier for t in tiers], "history_backend": cfg.history_backend,
                         "tools": registry.names() if registry else []}},
    )
    return ChatService(orchestrator, store, profile=profile, logger=component_logger("service", root_logger))


_service: Optional[ChatService] = None
_service_lock = threading.Lock()


def get_default_service() -> ChatService:
    """获取默认的 ChatService 实例（单例）。"""
    global _service
    with _service_lock:
        if _service is None:
            _service = build_chat_service(settings)
        return _service


def run_chat(
    user_id: str,
    thread_id: str,
    username: str,
    message: str,
    timestamp: Optional[str] = None,
    system_prompt: Optional[str] = None,
    service: Optional[ChatService] = None,
) -> Dict[str, Any]:
    """生成一条回复，任何业务错误都转换为一句道歉。

    Returns:
        {"ok", "text", "elapsed_ms", "model", "tier"}；失败时 ok=False 并带 error_code。
    """
    svc = service or get_default_service()
    try:
        outcome = svc.get_response(
            user_id=user_id,
            thread_id=thread_id,
            username=username,
            message=message,
            timestamp=timestamp,
            system_prompt=system_prompt,
        )
    except BusinessError as e:
        logging.getLogger("chat_core.service").error(
            f"Chat failed: {e.message}",
            extra={"extra": {"user_id": user_id, "thread_id": thread_id, "error_code": e.code}},
        )
        return {
            "ok": False,
            "text": APOLOGIES.get(type(e), DEFAULT_APOLOGY),
            "error_code": e.code,
            "elapsed_ms": None,
            "model": None,
            "tier": None,
        }
    return {
        "ok": True,
        "text": outcome.text,
        "elapsed_ms": round(outcome.elapsed_ms, 1),
        "model": outcome.model_name_used,
        "tier": outcome.tier,
    }
