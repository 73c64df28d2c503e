"""历史记录存储后端。"""

import logging
from typing import Optional

from chat_core.domain.exceptions import ValidationError

from .base import BoundedHistoryStore
from .json_store import JsonHistoryStore
from .memory_store import InMemoryHistoryStore
from .sqlite_store import SQLiteHistoryStore


def create_history_store(cfg, logger: Optional[logging.Logger] = None) -> BoundedHistoryStore:
    """根据配置中的 history_backend 创建存储实例。"""

    backend = str(getattr(cfg, "history_backend", "sqlite")).lower()
    max_pairs = int(getattr(cfg, "max_history_pairs", 10))
    if backend == "memory":
        return InMemoryHistoryStore(max_pairs=max_pairs, logger=logger)
    if backend == "sqlite":
        return SQLiteHistoryStore(db_dir=getattr(cfg, "history_db_path", "data"), max_pairs=max_pairs, logger=logger)
    if backend == "json":
        return JsonHistoryStore(root=getattr(cfg, "storage_root", ".storage"), max_pairs=max_pairs, logger=logger)
    raise ValidationError(code="UNKNOWN_HISTORY_BACKEND", message=backend)


__all__ = [
    "BoundedHistoryStore",
    "InMemoryHistoryStore",
    "JsonHistoryStore",
    "SQLiteHistoryStore",
    "create_history_store",
]
