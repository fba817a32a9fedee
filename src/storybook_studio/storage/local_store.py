"""绘本持久化 - 去掉图片后保存快照，超出配额时淘汰最旧的绘本"""

from __future__ import annotations

import json
import logging

from pydantic import TypeAdapter, ValidationError

from ..core.models import Storybook
from ..exceptions import PersistenceError, StorageQuotaError
from ..utils.config import GenerationPreferences
from .backends import KeyValueStorage

logger = logging.getLogger(__name__)

STORYBOOKS_KEY = "storybooks"
PREFERENCES_KEY = "imageSettings"

_books_adapter = TypeAdapter(list[Storybook])


class StorybookStore:
    """绘本集合的持久化

    快照中所有图片和音频引用都被置空，只保留文本和元数据；
    内存中的绘本不受影响。
    """

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    @staticmethod
    def _serialize(books: list[Storybook]) -> str:
        snapshot = [book.lightweight_copy() for book in books]
        return _books_adapter.dump_json(snapshot).decode("utf-8")

    def save(self, books: list[Storybook]) -> list[Storybook]:
        """保存绘本集合

        Args:
            books: 当前的绘本集合，最旧的在最前面

        Returns:
            实际保存的集合；发生淘汰时不包含最旧的一本

        Raises:
            PersistenceError: 淘汰一次后仍然超出配额，或集合只有一本
        """
        try:
            self.storage.set_item(STORYBOOKS_KEY, self._serialize(books))
            logger.debug("已保存 %d 本绘本", len(books))
            return list(books)
        except StorageQuotaError as e:
            if len(books) <= 1:
                raise PersistenceError(f"存储空间不足，无法保存绘本。请手动清理存储后重试 ({e})") from e
            logger.warning("存储空间不足，删除最旧的绘本《%s》后重试", books[0].title)

        remaining = list(books[1:])
        try:
            self.storage.set_item(STORYBOOKS_KEY, self._serialize(remaining))
        except StorageQuotaError as e:
            raise PersistenceError(f"删除旧绘本后存储空间仍然不足。请手动清理存储后重试 ({e})") from e
        return remaining

    def load(self) -> list[Storybook]:
        """读取绘本集合，没有快照时返回空列表"""
        raw = self.storage.get_item(STORYBOOKS_KEY)
        if not raw:
            return []
        try:
            books = _books_adapter.validate_json(raw)
        except ValidationError as e:
            raise PersistenceError(f"存储的绘本数据无法读取: {e.error_count()} 处错误") from e
        logger.debug("已读取 %d 本绘本", len(books))
        return books

    def save_preferences(self, preferences: GenerationPreferences) -> None:
        try:
            self.storage.set_item(PREFERENCES_KEY, preferences.model_dump_json())
        except StorageQuotaError as e:
            raise PersistenceError(f"存储空间不足，无法保存设置 ({e})") from e

    def load_preferences(self) -> GenerationPreferences:
        """读取生成偏好，没有保存过或数据损坏时返回默认值"""
        raw = self.storage.get_item(PREFERENCES_KEY)
        if not raw:
            return GenerationPreferences()
        try:
            return GenerationPreferences.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("生成偏好设置无法读取，使用默认值: %s", e)
            return GenerationPreferences()

    def clear(self) -> None:
        """删除所有绘本"""
        self.storage.remove_item(STORYBOOKS_KEY)
