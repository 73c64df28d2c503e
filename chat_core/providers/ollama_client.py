"""Ollama 本地兜底 Provider。

- URL: {base_url}/api/generate
- 请求: {"model", "prompt", "stream": true}
- 响应: NDJSON，每行一个 {"response": "...", "done": false}，最后一行 done=true。

/api/generate 不支持函数调用，因此 supports_tools=False，
ModelRequest 中的所有文本片段会被拼成一段 prompt。

整个流式生成受 ollama_deadline 总时限约束（httpx 超时只限单次读取），
每读一行检查一次 ModelRequest.cancel_event。
"""

import json
import logging
import threading
import time
from typing import Iterable, List, Optional

import httpx

from chat_core.domain.exceptions import ApiError, NetworkError, RequestCancelledError
from chat_core.domain.models import ModelRequest, ModelResponse, TextPart
from chat_core.providers.registry import OLLAMA_CONFIG


class OllamaClient:
    name = "ollama"
    supports_tools = OLLAMA_CONFIG.supports_tools

    def __init__(self, settings, model_name: Optional[str] = None, logger: Optional[logging.Logger] = None):
        self._settings = settings
        self.model_name = model_name or getattr(settings, "ollama_model", None) or OLLAMA_CONFIG.default_model
        self._logger = logger or logging.getLogger("chat_core.providers.ollama")

    def invoke(self, req: ModelRequest) -> ModelResponse:
        payload = {
            "model": self.model_name,
            "prompt": self._flatten_prompt(req),
            "stream": True,
        }
        if req.temperature is not None:
            payload["options"] = {"temperature": req.temperature}
        base = (getattr(self._settings, "ollama_base_url", None) or OLLAMA_CONFIG.base_url).rstrip("/")
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream("POST", f"{base}/api/generate", json=payload) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        raise ApiError(
                            code="API_ERROR",
                            message=resp.text,
                            http_status=resp.status_code,
                            model=self.model_name,
                        )
                    text = self._collect(resp.iter_lines(), req.cancel_event)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name, model=self.model_name)
        return ModelResponse(provider=self.name, model=self.model_name, parts=[TextPart(text=text)] if text else [])

    @staticmethod
    def _flatten_prompt(req: ModelRequest) -> str:
        chunks: List[str] = []
        for turn in req.contents:
            for part in turn.parts:
                if isinstance(part, TextPart) and part.text:
                    chunks.append(part.text)
        return "\n\n".join(chunks)

    def _collect(self, lines: Iterable[str], cancel_event: Optional[threading.Event] = None) -> str:
        """累加 response 片段，直到 done=true 或流结束。"""

        deadline_s = getattr(self._settings, "ollama_deadline", None) or self._settings.http_timeout
        deadline = time.monotonic() + deadline_s
        fragments: List[str] = []
        for line in lines:
            if cancel_event is not None and cancel_event.is_set():
                raise RequestCancelledError(code="REQUEST_CANCELLED", message="request was cancelled by the caller")
            if time.monotonic() > deadline:
                raise NetworkError(
                    code="DEADLINE_EXCEEDED",
                    message=f"Ollama generation exceeded {deadline_s}s",
                    provider=self.name,
                    model=self.model_name,
                )
            line = line.strip()
            if not line:
                continue
            try:
                chunk = json.loads(line)
            except json.JSONDecodeError:
                self._logger.warning("Skipping malformed Ollama stream line", extra={"extra": {"line": line[:200]}})
                continue
            if not isinstance(chunk, dict):
                continue
            if chunk.get("error"):
                raise ApiError(code="API_ERROR", message=str(chunk["error"]), model=self.model_name)
            fragment = chunk.get("response")
            if isinstance(fragment, str):
                fragments.append(fragment)
            if chunk.get("done") is True:
                break
        return "".join(fragments)
