"""基于 SQLite 的历史存储。

每个 (thread_id, user_id) 一行，history_json 保存 [{role, content}, ...]。
写入使用 INSERT ... ON CONFLICT DO UPDATE，保证单键 upsert 的原子性。
"""

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from chat_core.domain.models import ConversationTurn

from .base import BoundedHistoryStore, HistoryKey

DB_FILE_NAME = "history.db"

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS thread_histories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    thread_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    history_json TEXT NOT NULL,
    last_updated_at TIMESTAMP NOT NULL,
    UNIQUE(thread_id, user_id)
)
"""
UPSERT_SQL = (
    "INSERT INTO thread_histories (thread_id, user_id, history_json, last_updated_at) VALUES (?, ?, ?, ?) "
    "ON CONFLICT(thread_id, user_id) DO UPDATE SET "
    "history_json = excluded.history_json, last_updated_at = excluded.last_updated_at"
)
SELECT_SQL = "SELECT history_json FROM thread_histories WHERE thread_id = ? AND user_id = ?"
DELETE_SQL = "DELETE FROM thread_histories WHERE thread_id = ? AND user_id = ?"
DELETE_THREAD_SQL = "DELETE FROM thread_histories WHERE thread_id = ?"


def decode_turns(raw: str) -> List[ConversationTurn]:
    """解析 history_json。

    兼容旧格式：纯字符串数组，按 user / model 交替排列。
    """

    data: Any = json.loads(raw) if raw else []
    if not isinstance(data, list):
        raise ValueError("history_json is not an array")
    turns: List[ConversationTurn] = []
    for idx, item in enumerate(data):
        if isinstance(item, dict):
            turns.append(ConversationTurn.from_dict(item))
        else:
            turns.append(ConversationTurn(role="user" if idx % 2 == 0 else "model", content=str(item)))
    return turns


def encode_turns(turns: List[ConversationTurn]) -> str:
    return json.dumps([t.to_dict() for t in turns], ensure_ascii=False)


class SQLiteHistoryStore(BoundedHistoryStore):
    def __init__(self, db_dir: str | Path, max_pairs: int, logger=None):
        super().__init__(max_pairs, logger)
        directory = Path(db_dir).expanduser()
        directory.mkdir(parents=True, exist_ok=True)
        self._db_path = directory / DB_FILE_NAME
        # 连接在多个线程间共享，所有语句都在 _conn_lock 内执行
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn_lock = threading.Lock()
        with self._conn_lock, self._conn:
            self._conn.execute(CREATE_TABLE_SQL)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _read(self, key: HistoryKey) -> Optional[List[ConversationTurn]]:
        with self._conn_lock:
            row = self._conn.execute(SELECT_SQL, key).fetchone()
        if row is None:
            return None
        try:
            return decode_turns(row[0])
        except ValueError as e:
            # 损坏的记录按空历史处理，下一次 add 会覆盖它
            self._logger.warning(
                "Discarding unreadable history row",
                extra={"extra": {"thread_id": key[0], "user_id": key[1], "error": str(e)}},
            )
            return None

    def _write(self, key: HistoryKey, turns: List[ConversationTurn], updated_at: datetime) -> None:
        thread_id, user_id = key
        with self._conn_lock, self._conn:
            self._conn.execute(UPSERT_SQL, (thread_id, user_id, encode_turns(turns), updated_at.isoformat()))

    def _delete(self, key: HistoryKey) -> None:
        with self._conn_lock, self._conn:
            self._conn.execute(DELETE_SQL, key)

    def _delete_thread(self, thread_id: str) -> None:
        with self._conn_lock, self._conn:
            self._conn.execute(DELETE_THREAD_SQL, (thread_id,))

    def _close(self) -> None:
        with self._conn_lock:
            self._conn.close()
