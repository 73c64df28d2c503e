"""Gemini Provider 适配器。

本模块负责：

1. 接收统一的 ModelRequest。
2. 将其转换为 Generative Language REST API（generateContent）的请求格式。
3. 调用 HTTP 接口并处理网络/API 异常，配额耗尽统一映射为 RateLimitError。
4. 将响应 JSON 解析为统一的 ModelResponse（文本片段与函数调用片段）。

主模型和第二层模型都用这个客户端，只是 model_name 不同。
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from chat_core.domain.models import (
    ChatUsage,
    ContentTurn,
    FunctionCallPart,
    FunctionResponsePart,
    ModelRequest,
    ModelResponse,
    Part,
    TextPart,
    UnknownPart,
)
from chat_core.providers.registry import GEMINI_CONFIG
from chat_core.tools.definitions import ToolDef

_QUOTA_STATUSES = {"RESOURCE_EXHAUSTED"}


class GeminiClient:
    """Gemini 提供方客户端实现。"""

    name = "gemini"
    supports_tools = GEMINI_CONFIG.supports_tools

    def __init__(self, settings, model_name: Optional[str] = None, logger: Optional[logging.Logger] = None):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = settings
        self.model_name = model_name or getattr(settings, "primary_model", None) or GEMINI_CONFIG.default_model
        self._logger = logger or logging.getLogger("chat_core.providers.gemini")

    def invoke(self, req: ModelRequest) -> ModelResponse:
        """执行一次 generateContent 调用。

        步骤：
        1. 校验 API Key。
        2. 构造 HTTP 请求 payload。
        3. 发送请求并捕获网络错误/配额/服务端错误。
        4. 解析 candidates[0].content.parts。
        """

        api_key = getattr(self._settings, "gemini_api_key", None)
        if not api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="GEMINI_API_KEY not set")
        payload = self._build_payload(req)
        base = (getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url).rstrip("/")
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    f"{base}/models/{self.model_name}:generateContent",
                    json=payload,
                    headers={
                        "x-goog-api-key": api_key,
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name, model=self.model_name)
        if resp.status_code >= 400:
            self._raise_for_error(resp)
        try:
            data = resp.json()
        except json.JSONDecodeError as e:
            raise ApiError(code="BAD_RESPONSE", message=f"invalid JSON from Gemini: {e}", model=self.model_name)
        return self._parse_response(data)

    def _raise_for_error(self, resp: httpx.Response) -> None:
        status = ""
        message = resp.text
        try:
            err = (resp.json() or {}).get("error") or {}
            status = str(err.get("status") or "")
            message = str(err.get("message") or message)
        except (json.JSONDecodeError, AttributeError):
            pass
        if resp.status_code == 429 or status in _QUOTA_STATUSES:
            raise RateLimitError(
                code="RATE_LIMIT",
                message=f"Gemini quota exhausted: {message}",
                http_status=429,
                model=self.model_name,
            )
        raise ApiError(code="API_ERROR", message=message, http_status=resp.status_code, model=self.model_name)

    # ---- 请求构造 ----

    def _build_payload(self, req: ModelRequest) -> dict:
        payload: Dict[str, Any] = {
            "contents": [self._content_to_payload(c) for c in req.contents],
            "generationConfig": {
                "temperature": req.temperature
                if req.temperature is not None
                else getattr(self._settings, "temperature", GEMINI_CONFIG.default_temperature),
                "maxOutputTokens": req.max_tokens or GEMINI_CONFIG.max_tokens,
            },
        }
        if req.tools:
            payload["tools"] = [{"functionDeclarations": [self._serialize_tool(t) for t in req.tools]}]
        return payload

    def _content_to_payload(self, turn: ContentTurn) -> Dict[str, Any]:
        # generateContent 只接受 user / model 两种角色，函数结果以 user 角色回传
        role = "model" if turn.role == "model" else "user"
        return {"role": role, "parts": [self._part_to_payload(p) for p in turn.parts]}

    @staticmethod
    def _part_to_payload(part: Part) -> Dict[str, Any]:
        if isinstance(part, TextPart):
            return {"text": part.text}
        if isinstance(part, FunctionCallPart):
            return {"functionCall": {"name": part.name, "args": part.args}}
        if isinstance(part, FunctionResponsePart):
            return {"functionResponse": part.to_wire()}
        if isinstance(part, UnknownPart):
            return dict(part.raw)
        raise TypeError(f"unsupported part type: {type(part).__name__}")

    @staticmethod
    def _serialize_tool(tool: ToolDef) -> Dict[str, Any]:
        """把内部的 ToolDef 转成 Gemini 的 functionDeclaration。"""

        properties: Dict[str, Any] = {}
        required: List[str] = []
        for name, param in tool.params.items():
            schema = param.schema or {"type": "string"}
            if param.description:
                schema = {**schema, "description": param.description}
            properties[name] = schema
            if param.required:
                required.append(name)
        return {
            "name": tool.name,
            "description": tool.description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        }

    # ---- 响应解析 ----

    def _parse_response(self, data: Any) -> ModelResponse:
        if not isinstance(data, dict):
            raise ApiError(code="BAD_RESPONSE", message="Gemini response is not a JSON object", model=self.model_name)
        candidates = data.get("candidates") or []
        parts: List[Part] = []
        if candidates:
            if not isinstance(candidates, list) or not isinstance(candidates[0], dict):
                raise ApiError(code="BAD_RESPONSE", message="malformed Gemini candidate", model=self.model_name)
            content = candidates[0].get("content") or {}
            if not isinstance(content, dict):
                raise ApiError(code="BAD_RESPONSE", message="malformed Gemini content", model=self.model_name)
            raw_parts = content.get("parts") or []
            if not isinstance(raw_parts, list):
                raise ApiError(code="BAD_RESPONSE", message="malformed Gemini parts", model=self.model_name)
            for raw in raw_parts:
                part = self._parse_part(raw)
                if isinstance(part, UnknownPart):
                    self._logger.warning(
                        "Unrecognized response part",
                        extra={"extra": {"model": self.model_name, "keys": sorted(part.raw)}},
                    )
                parts.append(part)
        else:
            self._logger.warning(
                "Gemini returned no candidates",
                extra={"extra": {"model": self.model_name, "prompt_feedback": data.get("promptFeedback")}},
            )
        usage_raw = data.get("usageMetadata")
        if not isinstance(usage_raw, dict):
            usage_raw = {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("promptTokenCount", 0),
            completion_tokens=usage_raw.get("candidatesTokenCount", 0),
            total_tokens=usage_raw.get("totalTokenCount", 0),
        )
        return ModelResponse(provider=self.name, model=self.model_name, parts=parts, usage=usage, raw=data)

    @staticmethod
    def _parse_part(raw: Dict[str, Any]) -> Part:
        if not isinstance(raw, dict):
            return UnknownPart(raw={"value": raw})
        if "text" in raw:
            return TextPart(text=str(raw.get("text") or ""))
        if isinstance(raw.get("functionCall"), dict):
            call = raw["functionCall"]
            args = call.get("args")
            if isinstance(args, str):
                try:
                    args = json.loads(args)
                except json.JSONDecodeError:
                    args = {"_raw": args}
            return FunctionCallPart(name=str(call.get("name") or ""), args=args if isinstance(args, dict) else {})
        if isinstance(raw.get("functionResponse"), dict):
            resp = raw["functionResponse"]
            body = resp.get("response")
            content = body.get("content", "") if isinstance(body, dict) else (body or "")
            return FunctionResponsePart(name=str(resp.get("name") or ""), content=str(content))
        return UnknownPart(raw=raw)
