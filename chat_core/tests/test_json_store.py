import json
import tempfile
from pathlib import Path

from chat_core.infrastructure.storage.json_store import JsonHistoryStore


def test_json_store_file_layout():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = JsonHistoryStore(root=root, max_pairs=3)
        store.add("user/1", "thread 1", "hello", "hi")

        files = list((root / "threads").rglob("*.json"))
        assert len(files) == 1
        data = json.loads(files[0].read_text(encoding="utf-8"))
        assert data["thread_id"] == "thread 1"
        assert data["user_id"] == "user/1"
        assert data["turns"] == [{"role": "user", "content": "hello"}, {"role": "model", "content": "hi"}]
        assert data["last_updated_at"].endswith("Z")
        # 没有残留的临时文件
        assert not list(root.rglob("*.tmp"))


def test_json_store_clear_thread_removes_directory():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = JsonHistoryStore(root=root, max_pairs=3)
        store.add("u1", "t1", "a", "b")
        store.add("u2", "t1", "c", "d")
        thread_dir = root / "threads" / "t1"
        assert thread_dir.exists()
        store.clear_all_by_thread_id("t1")
        assert not thread_dir.exists()


def test_json_store_unreadable_file_is_ignored():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = JsonHistoryStore(root=root, max_pairs=3)
        path = root / "threads" / "t1" / "u1.json"
        path.parent.mkdir(parents=True)
        path.write_text("{broken", encoding="utf-8")
        assert store.get("u1", "t1") == []
        store.add("u1", "t1", "q", "a")
        assert len(store.get("u1", "t1")) == 2
