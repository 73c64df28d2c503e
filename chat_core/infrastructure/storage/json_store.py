import json
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote
from uuid import uuid4

from chat_core.domain.models import ConversationTurn

from .base import BoundedHistoryStore, HistoryKey


class JsonHistoryStore(BoundedHistoryStore):
    """每个 (thread, user) 一个 JSON 文件：<root>/threads/<thread_id>/<user_id>.json。"""

    def __init__(self, root: str | Path, max_pairs: int, logger=None):
        super().__init__(max_pairs, logger)
        self._root = Path(root).expanduser().resolve()
        self._threads_root = self._root / "threads"
        self._threads_root.mkdir(parents=True, exist_ok=True)

    def _thread_dir(self, thread_id: str) -> Path:
        return self._threads_root / quote(thread_id, safe="")

    def _path(self, key: HistoryKey) -> Path:
        thread_id, user_id = key
        return self._thread_dir(thread_id) / f"{quote(user_id, safe='')}.json"

    def _read(self, key: HistoryKey) -> Optional[List[ConversationTurn]]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            self._logger.warning(
                "Discarding unreadable history file",
                extra={"extra": {"path": str(path), "error": str(e)}},
            )
            return None
        return [ConversationTurn.from_dict(item) for item in data.get("turns") or [] if isinstance(item, dict)]

    def _write(self, key: HistoryKey, turns: List[ConversationTurn], updated_at: datetime) -> None:
        thread_id, user_id = key
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.parent / f"{path.stem}.{uuid4().hex}.json.tmp"
        obj = {
            "thread_id": thread_id,
            "user_id": user_id,
            "turns": [t.to_dict() for t in turns],
            "last_updated_at": updated_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, path)

    def _delete(self, key: HistoryKey) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()

    def _delete_thread(self, thread_id: str) -> None:
        tdir = self._thread_dir(thread_id)
        if tdir.exists():
            shutil.rmtree(tdir)
