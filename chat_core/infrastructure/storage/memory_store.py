from datetime import datetime
from typing import Dict, List, Optional

from chat_core.domain.history import ThreadHistory
from chat_core.domain.models import ConversationTurn

from .base import BoundedHistoryStore, HistoryKey


class InMemoryHistoryStore(BoundedHistoryStore):
    """进程内历史存储，重启即丢失，主要用于开发与测试。"""

    def __init__(self, max_pairs: int, logger=None):
        super().__init__(max_pairs, logger)
        self._rows: Dict[HistoryKey, ThreadHistory] = {}

    def _read(self, key: HistoryKey) -> Optional[List[ConversationTurn]]:
        row = self._rows.get(key)
        return list(row.turns) if row else None

    def _write(self, key: HistoryKey, turns: List[ConversationTurn], updated_at: datetime) -> None:
        thread_id, user_id = key
        self._rows[key] = ThreadHistory(
            thread_id=thread_id,
            user_id=user_id,
            turns=list(turns),
            last_updated_at=updated_at,
        )

    def _delete(self, key: HistoryKey) -> None:
        self._rows.pop(key, None)

    def _delete_thread(self, thread_id: str) -> None:
        for key in [k for k in list(self._rows) if k[0] == thread_id]:
            self._rows.pop(key, None)
