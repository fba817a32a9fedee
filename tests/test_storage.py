"""存储与持久化测试"""

import json
from unittest.mock import patch

import pytest

from storybook_studio.core.models import Page, Storybook
from storybook_studio.exceptions import PersistenceError, StorageQuotaError
from storybook_studio.storage import FileStorage, MemoryStorage, StorybookStore
from storybook_studio.storage.local_store import PREFERENCES_KEY, STORYBOOKS_KEY
from storybook_studio.utils.config import GenerationPreferences


def _books(count: int) -> list[Storybook]:
    """大小相同的若干本绘本"""
    return [
        Storybook(id=str(1000 + i), title=f"책 {i}", pages=[Page(page_number=1, text="가" * 200)])
        for i in range(count)
    ]


def _size(books: list[Storybook]) -> int:
    return len(STORYBOOKS_KEY.encode()) + len(StorybookStore._serialize(books).encode())


class TestMemoryStorage:
    def test_get_set_remove(self):
        storage = MemoryStorage()
        storage.set_item("a", "1")

        assert storage.get_item("a") == "1"
        storage.remove_item("a")
        assert storage.get_item("a") is None

    def test_quota(self):
        storage = MemoryStorage(quota_bytes=10)

        with pytest.raises(StorageQuotaError):
            storage.set_item("key", "x" * 20)
        assert storage.get_item("key") is None


class TestFileStorage:
    def test_persists_between_instances(self, tmp_path):
        path = tmp_path / "storage.json"
        FileStorage(path).set_item("a", "토끼")

        assert FileStorage(path).get_item("a") == "토끼"
        assert json.loads(path.read_text(encoding="utf-8")) == {"a": "토끼"}

    def test_quota(self, tmp_path):
        storage = FileStorage(tmp_path / "storage.json", quota_bytes=10)

        with pytest.raises(StorageQuotaError):
            storage.set_item("key", "x" * 20)
        assert not (tmp_path / "storage.json").exists()

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "storage.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(PersistenceError):
            FileStorage(path).get_item("a")

    def test_clear(self, tmp_path):
        storage = FileStorage(tmp_path / "storage.json")
        storage.set_item("a", "1")
        storage.clear()

        assert storage.get_item("a") is None


class TestStorybookStore:
    def test_round_trip_drops_artifacts(self, book):
        book.pages[0].illustration_image = "blob:storybook/p1"
        store = StorybookStore(MemoryStorage())

        saved = store.save([book])
        loaded = store.load()

        assert saved == [book]
        assert loaded == [book.lightweight_copy()]
        assert loaded[0].characters[0].reference_image is None
        assert loaded[0].pages[0].illustration_image is None
        assert loaded[0].characters[0].name == "토끼"
        # 内存中的绘本保留图片
        assert book.pages[0].illustration_image == "blob:storybook/p1"

    def test_load_empty(self):
        assert StorybookStore(MemoryStorage()).load() == []

    def test_load_invalid(self):
        storage = MemoryStorage()
        storage.set_item(STORYBOOKS_KEY, '[{"pages": []}]')

        with pytest.raises(PersistenceError):
            StorybookStore(storage).load()

    def test_quota_evicts_oldest_book(self):
        """超出配额时删除最旧的一本后重试一次"""
        books = _books(4)
        quota = _size(books[1:]) + 10
        assert _size(books) > quota
        store = StorybookStore(MemoryStorage(quota_bytes=quota))

        saved = store.save(books)

        assert [b.id for b in saved] == ["1001", "1002", "1003"]
        assert [b.id for b in store.load()] == ["1001", "1002", "1003"]

    def test_quota_retry_fails(self):
        books = _books(3)
        store = StorybookStore(MemoryStorage(quota_bytes=_size(books[2:])))

        with pytest.raises(PersistenceError, match="手动清理"):
            store.save(books)
        assert store.load() == []

    def test_quota_single_book(self):
        storage = MemoryStorage()
        store = StorybookStore(storage)

        with patch.object(storage, "set_item", side_effect=StorageQuotaError("full")) as set_item:
            with pytest.raises(PersistenceError):
                store.save(_books(1))
        assert set_item.call_count == 1

    def test_preferences_round_trip(self):
        store = StorybookStore(MemoryStorage())
        store.save_preferences(GenerationPreferences(aspect_ratio="1:1", tts_voice="Puck"))

        loaded = store.load_preferences()

        assert loaded.aspect_ratio == "1:1"
        assert loaded.tts_voice == "Puck"

    def test_corrupt_preferences_fall_back_to_defaults(self):
        storage = MemoryStorage()
        storage.set_item(PREFERENCES_KEY, "{broken")

        assert StorybookStore(storage).load_preferences() == GenerationPreferences()

    def test_clear(self):
        store = StorybookStore(MemoryStorage())
        store.save(_books(2))
        store.clear()

        assert store.load() == []
