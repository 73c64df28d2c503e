"""有界历史存储的公共实现。

各后端只需实现按键读写/删除的原语，裁剪与并发控制统一在这里完成：

- add 是“读-改-写”，同一个 (thread_id, user_id) 串行执行。
  锁按键哈希分到固定数量的分段里，数量不随键增长。
- clear_all_by_thread_id 会按顺序拿下全部分段锁，
  保证进行中的 add 不会把刚清掉的历史写回去。
- 超过 2 × max_pairs 条时从最旧的问答对开始丢弃。
- 后端抛出的非业务异常统一包装为 HistoryError。
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import ExitStack
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from chat_core.domain.exceptions import BusinessError, HistoryError, ValidationError
from chat_core.domain.models import ConversationTurn

HistoryKey = Tuple[str, str]  # (thread_id, user_id)

LOCK_STRIPES = 64


def trim_turns(turns: List[ConversationTurn], max_pairs: int) -> List[ConversationTurn]:
    limit = max_pairs * 2
    if len(turns) <= limit:
        return list(turns)
    kept = list(turns[len(turns) - limit:])
    # 旧格式的奇数行可能从半个问答对开始
    while kept and kept[0].role != "user":
        kept.pop(0)
    return kept


class BoundedHistoryStore(ABC):
    def __init__(self, max_pairs: int, logger: Optional[logging.Logger] = None):
        if max_pairs < 1:
            raise ValidationError(code="INVALID_MAX_PAIRS", message=f"max_pairs must be >= 1, got {max_pairs}")
        self._max_pairs = max_pairs
        self._logger = logger or logging.getLogger("chat_core.history")
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(LOCK_STRIPES)]

    @property
    def max_pairs(self) -> int:
        return self._max_pairs

    def add(self, user_id: str, thread_id: str, user_msg: str, model_msg: str) -> None:
        key = (thread_id, user_id)
        with self._lock_for(key):
            turns = self._guard("STORE_READ_ERROR", self._read, key) or []
            turns = list(turns)
            turns.append(ConversationTurn(role="user", content=user_msg))
            turns.append(ConversationTurn(role="model", content=model_msg))
            trimmed = trim_turns(turns, self._max_pairs)
            if len(trimmed) < len(turns):
                self._logger.debug(
                    "Evicted oldest history pairs",
                    extra={"extra": {"thread_id": thread_id, "user_id": user_id, "evicted": len(turns) - len(trimmed)}},
                )
            self._guard("STORE_WRITE_ERROR", self._write, key, trimmed, datetime.now(timezone.utc))

    def get(self, user_id: str, thread_id: str) -> List[ConversationTurn]:
        turns = self._guard("STORE_READ_ERROR", self._read, (thread_id, user_id))
        return list(turns or [])

    def clear(self, user_id: str, thread_id: str) -> None:
        key = (thread_id, user_id)
        with self._lock_for(key):
            self._guard("STORE_DELETE_ERROR", self._delete, key)

    def clear_all_by_thread_id(self, thread_id: str) -> None:
        with ExitStack() as stack:
            # 按固定顺序拿下全部分段
            for lock in self._locks:
                stack.enter_context(lock)
            self._guard("STORE_DELETE_ERROR", self._delete_thread, thread_id)

    def close(self) -> None:
        self._guard("STORE_CLOSE_ERROR", self._close)

    def _lock_for(self, key: HistoryKey) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    @staticmethod
    def _guard(code: str, func, *args):
        try:
            return func(*args)
        except BusinessError:
            raise
        except Exception as e:
            raise HistoryError(code=code, message=str(e))

    # ---- 后端原语 ----

    @abstractmethod
    def _read(self, key: HistoryKey) -> Optional[List[ConversationTurn]]:
        ...

    @abstractmethod
    def _write(self, key: HistoryKey, turns: List[ConversationTurn], updated_at: datetime) -> None:
        ...

    @abstractmethod
    def _delete(self, key: HistoryKey) -> None:
        ...

    @abstractmethod
    def _delete_thread(self, thread_id: str) -> None:
        ...

    def _close(self) -> None:
        return None
