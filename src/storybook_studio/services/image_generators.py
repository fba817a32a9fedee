"""单项图片生成 - 角色参考图、页面插图、单词卡片、关键物品和封面

每个生成器只负责组装 prompt 和参考图片列表，实际调用交给 GeminiClient。
成功时把图片引用写回绘本模型；生成失败不会抛出异常，而是返回失败的
GenerationResult。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from ..core.models import Character, CoverImage, KeyObject, Page, Storybook, VocabularyImage
from ..exceptions import MissingReferenceError
from ..prompts import PromptBuilder, build_prompt
from ..utils.config import GenerationPreferences
from .gemini_client import GeminiClient, GenerationResult

logger = logging.getLogger(__name__)


@dataclass
class ReferenceSelection:
    """一次插图生成使用的参考图片"""

    characters: list[Character] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    extras: int = 0
    previous_attached: bool = False

    @property
    def urls(self) -> list[str]:
        return [c.reference_image for c in self.characters if c.reference_image] + self.images


def first_description_token(description: str) -> str:
    tokens = description.split()
    return tokens[0].strip(".,;:!?\"'()").lower() if tokens else ""


def match_page_characters(book: Storybook, page: Page) -> list[Character]:
    """找出页面中出现的、带参考图的角色

    角色名或描述的第一个词（不区分大小写）出现在页面正文或场景角色字段中
    即视为匹配。一个都没有匹配时返回所有带参考图的角色。
    """
    candidates = book.characters_with_references()
    scene_characters = page.scene_structure.characters if page.scene_structure else ""
    haystack = f"{page.text}\n{scene_characters}".lower()

    matched = []
    for character in candidates:
        name = character.name.strip().lower()
        token = first_description_token(character.description)
        if (name and name in haystack) or (token and token in haystack):
            matched.append(character)
    return matched or candidates


def select_references(
    book: Storybook,
    index: int,
    edit_note: str = "",
    selected_references: Iterable[str] = (),
    include_previous: bool = True,
) -> ReferenceSelection:
    """按固定规则挑选插图的参考图片

    - 重新生成且有修改说明: 上一页插图、当前插图、用户选择的图片
    - 重新生成但没有修改说明: 上一页插图、当前插图
    - 首次生成: 上一页插图、用户选择的图片

    include_previous 为 False 时（并行批量生成）不使用上一页插图。
    """
    page = book.pages[index]
    selection = ReferenceSelection(characters=match_page_characters(book, page))
    selected = [url for url in selected_references if url]

    previous = book.previous_page(index) if include_previous else None
    if previous is not None and previous.illustration_image:
        selection.images.append(previous.illustration_image)
        selection.previous_attached = True

    if page.illustration_image:
        selection.images.append(page.illustration_image)
        if edit_note:
            selection.images.extend(selected)
            selection.extras = len(selected)
    else:
        selection.images.extend(selected)
        selection.extras = len(selected)

    return selection


class _ImageGenerator:
    section = ""

    def __init__(
        self,
        client: GeminiClient,
        preferences: GenerationPreferences | None = None,
        prompt_builder: PromptBuilder = build_prompt,
    ):
        self.client = client
        self.preferences = preferences or GenerationPreferences()
        self.build_prompt = prompt_builder

    @property
    def model(self) -> str:
        return self.preferences.model_for(self.section)

    async def _generate(self, prompt: str, references: list[str]) -> GenerationResult:
        return await self.client.generate_image(prompt, references, model=self.model)


class CharacterReferenceGenerator(_ImageGenerator):
    """角色参考图生成"""

    section = "character"

    async def generate(self, book: Storybook, index: int, description: str | None = None) -> GenerationResult:
        """生成或重新生成一个角色的参考图

        Args:
            book: 绘本
            index: 角色下标
            description: 新的角色描述，为空时使用原描述；生成成功后才写回角色

        Returns:
            生成结果；已有参考图时作为重新生成处理
        """
        character = book.characters[index]
        description = description or character.description

        regeneration = bool(character.reference_image)
        references = [character.reference_image] if regeneration else []
        prompt = self.build_prompt(
            "character",
            description=description,
            art_style=book.art_style,
            preferences=self.preferences,
            regeneration=regeneration,
        )

        logger.info("生成角色参考图: %s%s", character.name, " (重新生成)" if regeneration else "")
        result = await self._generate(prompt, references)
        if result.success:
            character.reference_image = result.artifact_url
            character.description = description
        return result


class IllustrationGenerator(_ImageGenerator):
    """页面插图生成"""

    section = "illustration"

    async def generate(
        self,
        book: Storybook,
        index: int,
        edit_note: str = "",
        selected_references: Iterable[str] = (),
        include_previous: bool = True,
    ) -> GenerationResult:
        """生成一页插图

        Args:
            book: 绘本
            index: 页面下标
            edit_note: 修改说明
            selected_references: 用户额外选择的参考图片
            include_previous: 是否附带上一页插图

        Raises:
            MissingReferenceError: 没有任何角色参考图
        """
        if not book.characters_with_references():
            raise MissingReferenceError("请先生成角色参考图")

        page = book.pages[index]
        edit_note = edit_note.strip()
        regeneration = bool(page.illustration_image)
        selection = select_references(book, index, edit_note, selected_references, include_previous)

        prompt = self.build_prompt(
            "illustration",
            book=book,
            page=page,
            characters=selection.characters,
            preferences=self.preferences,
            edit_note=edit_note,
            regeneration=regeneration,
            extra_references=selection.extras,
            previous_attached=selection.previous_attached,
        )

        logger.info(
            "生成第 %d 页插图: 角色参考 %d 张, 其他参考 %d 张",
            page.page_number,
            len(selection.characters),
            len(selection.images),
        )
        result = await self._generate(prompt, selection.urls)
        if result.success:
            page.illustration_image = result.artifact_url
            page.edit_note = edit_note
        return result


class VocabularyImageGenerator(_ImageGenerator):
    """单词卡片与关键物品图片生成"""

    section = "vocabulary"

    @staticmethod
    def find_key_object(book: Storybook, word: str, korean: str = "") -> KeyObject | None:
        """按英文名或韩文名（不区分大小写）精确匹配关键物品"""
        labels = {label.strip().lower() for label in (word, korean) if label and label.strip()}
        for key_object in book.key_objects:
            names = {n.strip().lower() for n in (key_object.name, key_object.korean) if n and n.strip()}
            if labels & names:
                return key_object
        return None

    async def generate(self, book: Storybook, index: int) -> GenerationResult:
        """生成第 index 个单词的卡片图片

        单词与已有图片的关键物品匹配时直接复用该图片，不发起请求。
        """
        item = book.educational_content.vocabulary[index]
        slots = book.ensure_vocabulary_slots()
        key_object = self.find_key_object(book, item.word, item.korean)

        if key_object is not None and key_object.image_url:
            logger.info("单词 %s 复用关键物品 %s 的图片", item.word, key_object.name)
            slots[index] = VocabularyImage(word=item.word, korean=item.korean, image_url=key_object.image_url, reused=True)
            return GenerationResult(success=True, artifact_url=key_object.image_url, reused=True)

        prompt = self.build_prompt(
            "vocabulary",
            word=item.word,
            korean=item.korean,
            art_style=book.art_style,
            preferences=self.preferences,
            key_object=key_object,
        )
        logger.info("生成单词卡片: %s", item.word)
        result = await self._generate(prompt, [])
        if result.success:
            slots[index] = VocabularyImage(word=item.word, korean=item.korean, image_url=result.artifact_url)
        return result

    async def generate_key_object(self, book: Storybook, index: int) -> GenerationResult:
        """生成关键物品图片"""
        key_object = book.key_objects[index]
        prompt = self.build_prompt(
            "key_object",
            key_object=key_object,
            art_style=book.art_style,
            preferences=self.preferences,
        )
        logger.info("生成关键物品图片: %s", key_object.name)
        result = await self._generate(prompt, [])
        if result.success:
            key_object.image_url = result.artifact_url
        return result


class CoverGenerator(_ImageGenerator):
    """封面生成，使用全部角色参考图"""

    section = "illustration"

    async def generate(self, book: Storybook) -> GenerationResult:
        characters = book.characters_with_references()
        prompt = self.build_prompt("cover", book=book, characters=characters, preferences=self.preferences)
        logger.info("生成封面: 《%s》", book.title)
        result = await self._generate(prompt, [c.reference_image for c in characters])
        if result.success:
            book.cover_image = CoverImage(image_url=result.artifact_url, prompt=prompt)
        return result
