import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "chat_core"


class JsonFormatter(logging.Formatter):
    def __init__(self, redact_content: bool = False):
        super().__init__()
        self._redact = redact_content

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if self._redact:
            msg = (msg or "")[:64]
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            payload.update(extra)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger(cfg, name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """根据配置构造 JSON 文件日志器，重复调用不会重复挂 handler。"""

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, str(getattr(cfg, "log_level", "INFO")).upper(), logging.INFO))
    log_dir = Path(getattr(cfg, "log_dir", "logs"))
    log_path = (log_dir / "chat.log").resolve()
    for h in logger.handlers:
        if isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_path:
            return logger
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setFormatter(JsonFormatter(redact_content=bool(getattr(cfg, "log_redact_content", False))))
    logger.addHandler(fh)
    return logger


def component_logger(component: str, parent: Optional[logging.Logger] = None) -> logging.Logger:
    base = parent or logging.getLogger(ROOT_LOGGER_NAME)
    return base.getChild(component)


def log_event(logger: logging.Logger, level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
    payload = dict(log_ctx)
    payload.update(fields)
    logger.log(level, message, extra={"extra": payload})
