"""回复生成编排器。

按固定顺序走一遍回退链（主模型 → 第二层 → 本地兜底），
对成功的响应做解析：纯文本直接作为回复，函数调用则经工具注册表执行后
再向同一个 Provider 发起第二轮请求。最终回复只写入历史一次。
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from chat_core.domain.exceptions import (
    BusinessError,
    HistoryError,
    ProviderChainError,
    RateLimitError,
    RequestCancelledError,
    TierAttempt,
    ToolError,
    ValidationError,
)
from chat_core.domain.history import HistoryStore
from chat_core.domain.models import (
    ContentTurn,
    ConversationTurn,
    FunctionCallPart,
    FunctionResponsePart,
    InvocationOutcome,
    ModelRequest,
    ModelResponse,
    Part,
    TextPart,
    UnknownPart,
)
from chat_core.infrastructure.logging.logger import component_logger, log_event
from chat_core.prompts import PromptAssembler
from chat_core.providers.base import ProviderTier
from chat_core.tools.definitions import ToolCall, ToolResult
from chat_core.tools.executor import ToolRegistry

EMPTY_REPLY_APOLOGY = "抱歉，这次没能组织好回复，请换个说法再试一次🙏"
TOOL_FALLBACK_PREFIX = "我查到了下面这些信息："


class ProviderOrchestrator:
    def __init__(
        self,
        store: HistoryStore,
        tiers: Sequence[ProviderTier],
        tool_registry: Optional[ToolRegistry] = None,
        tool_result_max_chars: int = 1800,
        temperature: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if not tiers:
            raise ValidationError(code="NO_PROVIDER_TIER", message="at least the primary tier is required")
        if tiers[0].tier != "primary":
            raise ValidationError(code="INVALID_TIER_ORDER", message="the first tier must be the primary model")
        self._store = store
        self._tiers = list(tiers)
        self._registry = tool_registry
        self._tool_result_max_chars = tool_result_max_chars
        self._temperature = temperature
        self._logger = logger or component_logger("orchestrator")
        self._assembler = PromptAssembler(tool_registry.declarations() if tool_registry else ())

    @property
    def tiers(self) -> List[ProviderTier]:
        return list(self._tiers)

    def get_response(
        self,
        user_id: str,
        thread_id: str,
        username: str,
        message: str,
        timestamp: Optional[str],
        system_prompt: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> InvocationOutcome:
        """生成一条回复。

        Returns:
            InvocationOutcome，model_name_used 为产出最终文本的那一层模型。

        Raises:
            ProviderChainError: 所有可用层都失败。
            ToolError: 模型请求了未注册的工具或参数非法。
            RequestCancelledError: cancel_event 在处理过程中被置位。
        """

        start = time.monotonic()
        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "user_id": user_id,
            "thread_id": thread_id,
            "username": username,
        }
        self._check_cancelled(cancel_event, log_ctx)
        history = self._load_history(user_id, thread_id, log_ctx)

        attempts: List[TierAttempt] = []
        for tier in self._tiers:
            self._check_cancelled(cancel_event, log_ctx)
            model = tier.client.model_name
            try:
                text = self._run_tier(tier, system_prompt, history, message, timestamp, log_ctx, cancel_event)
            except RateLimitError as e:
                attempts.append(TierAttempt(tier=tier.tier, model=model, kind="quota", error=e))
                log_event(self._logger, logging.WARNING, "Provider quota exhausted", log_ctx,
                          tier=tier.tier, model=model, error=e.message)
                continue
            except (ToolError, RequestCancelledError):
                raise
            except BusinessError as e:
                attempts.append(TierAttempt(tier=tier.tier, model=model, kind="error", error=e))
                log_event(self._logger, logging.ERROR, "Provider call failed", log_ctx,
                          tier=tier.tier, model=model, error_code=e.code, error=e.message)
                if tier.escalate_on_any_error:
                    continue
                break
            return self._finish(user_id, thread_id, message, text, tier, start, log_ctx, cancel_event)

        log_event(self._logger, logging.ERROR, "All provider tiers failed", log_ctx,
                  attempts=[f"{a.tier}:{a.kind}" for a in attempts])
        raise ProviderChainError(attempts)

    # ---- 单层调用 ----

    def _run_tier(
        self,
        tier: ProviderTier,
        system_prompt: str,
        history: List[ConversationTurn],
        message: str,
        timestamp: Optional[str],
        log_ctx: Dict[str, Any],
        cancel_event: Optional[threading.Event],
    ) -> str:
        client = tier.client
        use_tools = bool(client.supports_tools and self._registry is not None and len(self._registry) > 0)
        prompt = self._assembler.assemble(system_prompt, history, message, timestamp=timestamp, include_tools=use_tools)
        req = ModelRequest(
            contents=[ContentTurn(role="user", parts=[TextPart(text=prompt)])],
            tools=self._registry.declarations() if use_tools else None,
            temperature=self._temperature,
            cancel_event=cancel_event,
        )
        log_event(self._logger, logging.INFO, "Calling provider", log_ctx,
                  tier=tier.tier, provider=client.name, model=client.model_name, tools=use_tools)
        resp = client.invoke(req)
        calls = self._interpret(resp, log_ctx)
        if calls and use_tools:
            return self._tool_round_trip(tier, req, resp, calls, log_ctx, cancel_event)
        if calls:
            log_event(self._logger, logging.WARNING, "Ignoring function calls from tool-less provider", log_ctx,
                      tier=tier.tier, calls=[c.name for c in calls])
        return resp.text()

    def _interpret(self, resp: ModelResponse, log_ctx: Dict[str, Any]) -> List[FunctionCallPart]:
        """返回响应中的函数调用；无法识别的片段只记日志。"""

        for part in resp.parts:
            if isinstance(part, FunctionResponsePart):
                log_event(self._logger, logging.WARNING, "Unexpected function response part from model", log_ctx,
                          name=part.name)
            elif isinstance(part, UnknownPart):
                log_event(self._logger, logging.WARNING, "Unknown response part", log_ctx,
                          keys=sorted(part.raw))
        return resp.function_calls()

    def _tool_round_trip(
        self,
        tier: ProviderTier,
        req: ModelRequest,
        resp: ModelResponse,
        calls: List[FunctionCallPart],
        log_ctx: Dict[str, Any],
        cancel_event: Optional[threading.Event],
    ) -> str:
        results: List[ToolResult] = []
        for part in calls:
            self._check_cancelled(cancel_event, log_ctx)
            log_event(self._logger, logging.INFO, "Tool call received", log_ctx,
                      tool_name=part.name, tool_args=part.args)
            # ToolError 直接向上抛出
            result = self._registry.dispatch(ToolCall.from_part(part))
            log_event(self._logger, logging.INFO, "Tool execution finished", log_ctx,
                      tool_name=result.name, result_preview=result.content[:200])
            results.append(result)

        model_parts: List[Part] = [p for p in resp.parts if isinstance(p, (TextPart, FunctionCallPart))]
        response_parts: List[Part] = [
            FunctionResponsePart(name=r.name, content=r.content[: self._tool_result_max_chars]) for r in results
        ]
        follow_up = ModelRequest(
            contents=list(req.contents)
            + [ContentTurn(role="model", parts=model_parts), ContentTurn(role="function", parts=response_parts)],
            tools=req.tools,
            temperature=req.temperature,
            cancel_event=req.cancel_event,
        )
        self._check_cancelled(cancel_event, log_ctx)
        second = tier.client.invoke(follow_up)
        self._interpret(second, log_ctx)
        text = second.text()
        if not text.strip():
            log_event(self._logger, logging.WARNING, "Empty reply after tool call, using raw tool result", log_ctx,
                      tier=tier.tier)
            text = "\n\n".join([TOOL_FALLBACK_PREFIX] + [r.content for r in results])
        return text

    # ---- 收尾 ----

    def _finish(
        self,
        user_id: str,
        thread_id: str,
        message: str,
        text: str,
        tier: ProviderTier,
        start: float,
        log_ctx: Dict[str, Any],
        cancel_event: Optional[threading.Event],
    ) -> InvocationOutcome:
        self._check_cancelled(cancel_event, log_ctx)
        persisted = False
        if text.strip():
            try:
                self._store.add(user_id, thread_id, message, text)
                persisted = True
            except HistoryError as e:
                log_event(self._logger, logging.ERROR, "Failed to persist history", log_ctx,
                          error_code=e.code, error=e.message)
        else:
            log_event(self._logger, logging.WARNING, "Provider returned empty reply", log_ctx, tier=tier.tier)
            text = EMPTY_REPLY_APOLOGY
        elapsed_ms = (time.monotonic() - start) * 1000
        log_event(self._logger, logging.INFO, "Completed response", log_ctx,
                  tier=tier.tier, model=tier.client.model_name, elapsed_ms=round(elapsed_ms, 1), persisted=persisted)
        return InvocationOutcome(
            text=text,
            elapsed_ms=elapsed_ms,
            model_name_used=tier.client.model_name,
            tier=tier.tier,
            persisted=persisted,
        )

    def _load_history(self, user_id: str, thread_id: str, log_ctx: Dict[str, Any]) -> List[ConversationTurn]:
        try:
            return self._store.get(user_id, thread_id)
        except HistoryError as e:
            # 读不到历史就当作新会话
            log_event(self._logger, logging.WARNING, "Failed to read history, continuing without it", log_ctx,
                      error_code=e.code, error=e.message)
            return []

    def _check_cancelled(self, cancel_event: Optional[threading.Event], log_ctx: Dict[str, Any]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            log_event(self._logger, logging.INFO, "Request cancelled", log_ctx)
            raise RequestCancelledError(code="REQUEST_CANCELLED", message="request was cancelled by the caller")
