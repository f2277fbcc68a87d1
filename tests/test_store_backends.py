"""
Tests for the key-value store backends.

Covers:
  - InMemoryKeyValueStore
  - FileKeyValueStore (JSON file persistence, atomic writes, bad files)
  - Store factory
"""
import json
import os
import pytest

from database.store_factory import create_store, get_store, reset_store
from database.store_file import FileKeyValueStore
from database.store_memory import InMemoryKeyValueStore
from job_queue.queue_store import QueueStore
from conftest import make_item


# ──────────────────────────────────────────────────────────────
#  InMemoryKeyValueStore
# ──────────────────────────────────────────────────────────────

class TestInMemoryKeyValueStore:
    @pytest.fixture
    def store(self):
        return InMemoryKeyValueStore()

    @pytest.mark.asyncio
    async def test_get_default(self, store):
        assert await store.get("missing") is None
        assert await store.get("missing", []) == []

    @pytest.mark.asyncio
    async def test_set_get_delete(self, store):
        await store.set("k", [1, 2])
        assert await store.get("k") == [1, 2]
        assert await store.keys() == ["k"]
        await store.delete("k")
        assert await store.get("k") is None
        await store.delete("k")

    @pytest.mark.asyncio
    async def test_values_are_copied(self, store):
        value = [{"id": "a"}]
        await store.set("k", value)
        value[0]["id"] = "changed"
        fetched = await store.get("k")
        fetched.append({"id": "b"})
        assert await store.get("k") == [{"id": "a"}]


# ──────────────────────────────────────────────────────────────
#  FileKeyValueStore
# ──────────────────────────────────────────────────────────────

class TestFileKeyValueStore:
    @pytest.fixture
    def path(self, tmp_path):
        return tmp_path / "nested" / "queue.json"

    def test_creates_parent_directory(self, path):
        FileKeyValueStore(str(path))
        assert path.parent.is_dir()
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_set_writes_json_document(self, path):
        store = FileKeyValueStore(str(path))
        await store.set("promptQueue.items", [{"id": "a"}])
        with open(path) as f:
            assert json.load(f) == {"promptQueue.items": [{"id": "a"}]}
        assert not path.with_suffix(".json.tmp").exists()

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, path):
        first = QueueStore(FileKeyValueStore(str(path)))
        await first.add(make_item("aaaa0001"))
        await first.add(make_item("bbbb0002"))
        await first.mark_processed("aaaa0001")

        second = QueueStore(FileKeyValueStore(str(path)))
        items = await second.get_all()
        assert [i.id for i in items] == ["aaaa0001", "bbbb0002"]
        assert [i.processed for i in items] == [True, False]

    @pytest.mark.asyncio
    async def test_delete_persists(self, path):
        store = FileKeyValueStore(str(path))
        await store.set("a", 1)
        await store.set("b", 2)
        await store.delete("a")
        assert await FileKeyValueStore(str(path)).keys() == ["b"]

    @pytest.mark.asyncio
    async def test_corrupt_file_loads_empty(self, path):
        path.parent.mkdir(parents=True)
        path.write_text("{not json")
        store = FileKeyValueStore(str(path))
        assert await store.keys() == []
        await store.set("k", "v")
        assert json.loads(path.read_text()) == {"k": "v"}

    @pytest.mark.asyncio
    async def test_non_object_document_loads_empty(self, path):
        path.parent.mkdir(parents=True)
        path.write_text("[1, 2, 3]")
        assert await FileKeyValueStore(str(path)).keys() == []

    @pytest.mark.asyncio
    async def test_failed_write_changes_neither_memory_nor_disk(self, path, monkeypatch):
        queue = QueueStore(FileKeyValueStore(str(path)))
        await queue.add(make_item("aaaa0001"))

        def refuse(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", refuse)
        with pytest.raises(OSError):
            await queue.add(make_item("bbbb0002"))
        monkeypatch.undo()

        assert [i.id for i in await queue.get_all()] == ["aaaa0001"]
        reloaded = QueueStore(FileKeyValueStore(str(path)))
        assert [i.id for i in await reloaded.get_all()] == ["aaaa0001"]
        assert not path.with_suffix(".json.tmp").exists()

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_key(self, path, monkeypatch):
        store = FileKeyValueStore(str(path))
        await store.set("k", "v")

        def refuse(src, dst):
            raise OSError("read-only file system")

        monkeypatch.setattr(os, "replace", refuse)
        with pytest.raises(OSError):
            await store.delete("k")
        monkeypatch.undo()

        assert await store.get("k") == "v"
        assert not path.with_suffix(".json.tmp").exists()


# ──────────────────────────────────────────────────────────────
#  Store Factory
# ──────────────────────────────────────────────────────────────

class TestStoreFactory:
    def test_default_is_memory(self):
        assert isinstance(create_store(), InMemoryKeyValueStore)

    def test_file_backend(self, tmp_path):
        store = create_store({"backend": "file", "file_path": str(tmp_path / "q.json")})
        assert isinstance(store, FileKeyValueStore)
        assert store.path == tmp_path / "q.json"

    def test_singleton(self):
        first = create_store({"backend": "memory"})
        assert create_store({"backend": "memory"}) is first
        assert get_store() is first

    def test_reset(self):
        first = get_store()
        reset_store()
        assert get_store() is not first
