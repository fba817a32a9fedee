"""应用状态 - 绘本集合、当前绘本与生成偏好"""

from __future__ import annotations

import logging
import time

from ..storage.local_store import StorybookStore
from ..utils.config import GenerationPreferences
from .models import Character, Page, Storybook, VocabularyItem

logger = logging.getLogger(__name__)

COPY_SUFFIX = " (복사본)"


class StudioState:
    """显式的应用状态对象

    所有对绘本集合的修改都经过这里，修改后调用 persist() 保存快照。
    集合按创建顺序排列，最旧的在最前面。
    """

    def __init__(
        self,
        store: StorybookStore,
        storybooks: list[Storybook] | None = None,
        preferences: GenerationPreferences | None = None,
    ):
        self.store = store
        self.storybooks: list[Storybook] = storybooks or []
        self.preferences = preferences or GenerationPreferences()
        self.current_id: str | None = None

    @classmethod
    def load(cls, store: StorybookStore) -> "StudioState":
        """从存储中恢复状态"""
        state = cls(store, store.load(), store.load_preferences())
        logger.info("已加载 %d 本绘本", len(state.storybooks))
        return state

    @property
    def current(self) -> Storybook | None:
        return self.get(self.current_id) if self.current_id else None

    def get(self, book_id: str) -> Storybook | None:
        return next((b for b in self.storybooks if b.id == book_id), None)

    def index_of(self, book_id: str) -> int:
        for i, book in enumerate(self.storybooks):
            if book.id == book_id:
                return i
        raise KeyError(f"找不到绘本: {book_id}")

    def persist(self) -> None:
        """保存快照；若因配额淘汰了旧绘本，内存中的集合同步更新"""
        saved = self.store.save(self.storybooks)
        if len(saved) != len(self.storybooks):
            kept = {b.id for b in saved}
            self.storybooks = [b for b in self.storybooks if b.id in kept]
            if self.current_id not in kept:
                self.current_id = None

    def add(self, book: Storybook) -> Storybook:
        """加入新绘本（同 id 时替换）并设为当前绘本"""
        if self.get(book.id) is not None:
            return self.replace(book)
        self.storybooks.append(book)
        self.current_id = book.id
        self.persist()
        return book

    def replace(self, book: Storybook) -> Storybook:
        self.storybooks[self.index_of(book.id)] = book
        self.current_id = book.id
        self.persist()
        return book

    def select(self, book_id: str) -> Storybook:
        book = self.get(book_id)
        if book is None:
            raise KeyError(f"找不到绘本: {book_id}")
        self.current_id = book_id
        return book

    def delete(self, book_id: str) -> Storybook:
        book = self.storybooks.pop(self.index_of(book_id))
        if self.current_id == book_id:
            self.current_id = None
        self.persist()
        return book

    def duplicate(self, book_id: str) -> Storybook:
        """复制绘本: 新 id，标题加后缀，插入到最前面"""
        source = self.storybooks[self.index_of(book_id)]
        copy = source.model_copy(deep=True)
        copy.id = self._new_id()
        copy.title = f"{source.title}{COPY_SUFFIX}"
        self.storybooks.insert(0, copy)
        self.persist()
        return copy

    def rename(self, book_id: str, title: str) -> Storybook:
        title = title.strip()
        if not title:
            raise ValueError("标题不能为空")
        book = self.storybooks[self.index_of(book_id)]
        book.title = title
        self.persist()
        return book

    # 编辑绘本内容

    def add_character(self, book_id: str, name: str, description: str, role: str = "") -> Character:
        """添加角色，名字和外貌描述都不能为空，名字在绘本内唯一"""
        name, description = name.strip(), description.strip()
        if not name or not description:
            raise ValueError("角色名和外貌描述不能为空")
        book = self.storybooks[self.index_of(book_id)]
        if any(c.name == name for c in book.characters):
            raise ValueError(f"角色已存在: {name}")
        character = Character(name=name, description=description, role=role.strip() or "기타")
        book.characters.append(character)
        self.persist()
        return character

    def remove_character(self, book_id: str, index: int) -> Character:
        book = self.storybooks[self.index_of(book_id)]
        character = book.characters.pop(index)
        self.persist()
        return character

    def rename_character(self, book_id: str, index: int, name: str) -> Character:
        name = name.strip()
        if not name:
            raise ValueError("角色名不能为空")
        book = self.storybooks[self.index_of(book_id)]
        if any(c.name == name for i, c in enumerate(book.characters) if i != index):
            raise ValueError(f"角色已存在: {name}")
        character = book.characters[index]
        character.name = name
        self.persist()
        return character

    def set_character_image(self, book_id: str, index: int, image_url: str) -> Character:
        """用外部图片作为角色参考图"""
        character = self.storybooks[self.index_of(book_id)].characters[index]
        character.reference_image = image_url
        self.persist()
        return character

    def edit_page_text(self, book_id: str, index: int, text: str) -> Page:
        text = text.strip()
        if not text:
            raise ValueError("页面内容不能为空")
        page = self.storybooks[self.index_of(book_id)].pages[index]
        page.text = text
        self.persist()
        return page

    def edit_vocabulary(
        self, book_id: str, index: int, word: str | None = None, korean: str | None = None
    ) -> VocabularyItem:
        """修改学习单词或韩文释义，已生成的单词卡片保留图片并同步文字"""
        updates = {k: v.strip() for k, v in (("word", word), ("korean", korean)) if v is not None}
        if not updates or not all(updates.values()):
            raise ValueError("单词内容不能为空")
        book = self.storybooks[self.index_of(book_id)]
        item = book.educational_content.vocabulary[index]
        for key, value in updates.items():
            setattr(item, key, value)
        slot = book.ensure_vocabulary_slots()[index]
        if slot is not None:
            slot.word, slot.korean = item.word, item.korean
        self.persist()
        return item

    def move(self, from_index: int, to_index: int) -> None:
        """调整绘本顺序"""
        book = self.storybooks.pop(from_index)
        self.storybooks.insert(to_index, book)
        self.persist()

    def save_preferences(self, preferences: GenerationPreferences | None = None) -> None:
        if preferences is not None:
            self.preferences = preferences
        self.store.save_preferences(self.preferences)

    def reset_preferences(self) -> GenerationPreferences:
        self.preferences = GenerationPreferences()
        self.store.save_preferences(self.preferences)
        return self.preferences

    def _new_id(self) -> str:
        new_id = str(int(time.time() * 1000))
        while self.get(new_id) is not None:
            new_id = str(int(new_id) + 1)
        return new_id
