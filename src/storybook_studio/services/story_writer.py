"""故事生成服务 - 调用文本模型生成绘本 JSON 并转换为 Storybook"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ..core.characters import expand_group_characters
from ..core.models import MAX_TOTAL_PAGES, Character, Quiz, Storybook, TargetAge
from ..exceptions import GenerationError, ResponseShapeError
from ..prompts import PromptBuilder, build_prompt
from .gemini_client import GeminiClient

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_FENCE = re.compile(r"```(?:json)?\s*")


class StoryRequest(BaseModel):
    """故事生成请求

    total_pages 为 0 表示由模型决定页数，否则必须在 1-30 之间。
    """

    title: str = Field(..., min_length=1, description="绘本标题")
    target_age: TargetAge = Field(default=TargetAge.PRESCHOOL, description="目标年龄段")
    total_pages: int = Field(default=0, ge=0, le=MAX_TOTAL_PAGES, description="页数，0 为自动")
    art_style: str = Field(default="", description="画风")
    reference_content: str = Field(default="", description="参考内容或修改要求")
    text_model: str | None = Field(None, description="文本模型，默认使用偏好设置")
    existing_characters: list[Character] = Field(default_factory=list, description="沿用的角色")


def _snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def normalize_keys(value: Any) -> Any:
    """递归地把 camelCase 键转换为 snake_case"""
    if isinstance(value, dict):
        return {_snake(k): normalize_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_keys(item) for item in value]
    return value


def extract_json(text: str) -> dict:
    """从模型回复中提取 JSON 对象

    去掉 Markdown 代码块标记，取第一个 { 到最后一个 } 之间的内容。
    """
    cleaned = _FENCE.sub("", text).strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ResponseShapeError("模型回复中没有找到 JSON 对象")
    try:
        data = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as e:
        raise ResponseShapeError(f"模型回复的 JSON 无法解析: {e}") from e
    if not isinstance(data, dict):
        raise ResponseShapeError("模型回复的 JSON 不是对象")
    return data


class StoryWriter:
    """故事与测验生成

    负责:
    - 按年龄段构建故事 prompt
    - 解析模型返回的 JSON
    - 展开群体角色、重新编号页面
    """

    def __init__(self, client: GeminiClient, prompt_builder: PromptBuilder = build_prompt):
        self.client = client
        self.build_prompt = prompt_builder

    async def _ask(self, prompt: str, model: str | None) -> dict:
        result = await self.client.generate_text(prompt, model=model)
        if not result.success:
            raise GenerationError(result.error or "文本生成失败")
        return extract_json(result.text or "")

    async def write(self, request: StoryRequest) -> Storybook:
        """生成一本新绘本

        Args:
            request: 已通过校验的生成请求

        Returns:
            不含任何图片的 Storybook
        """
        logger.info("生成故事: 《%s》 %s岁, 页数 %s", request.title, request.target_age.value, request.total_pages or "自动")
        prompt = self.build_prompt(
            "story",
            title=request.title,
            target_age=request.target_age.value,
            total_pages=request.total_pages,
            reference_content=request.reference_content,
            existing_characters=request.existing_characters,
        )
        data = await self._ask(prompt, request.text_model)
        book = self._to_storybook(data, request)
        logger.info("故事生成完成: %d 页, %d 个角色", len(book.pages), len(book.characters))
        return book

    async def rewrite(self, book: Storybook, request: StoryRequest) -> Storybook:
        """保留角色重新生成故事

        新绘本沿用原绘本的 id；按位置恢复原角色的参考图片。
        """
        existing = [c.model_copy() for c in book.characters]
        request = request.model_copy(update={"existing_characters": existing})
        rewritten = await self.write(request)

        for index, character in enumerate(rewritten.characters):
            if index < len(existing) and existing[index].reference_image:
                character.reference_image = existing[index].reference_image

        rewritten.id = book.id
        return rewritten

    async def write_quizzes(self, book: Storybook, count: int = 5, model: str | None = None) -> list[Quiz]:
        """为绘本生成阅读理解测验"""
        prompt = self.build_prompt("quiz", book=book, count=count)
        data = normalize_keys(await self._ask(prompt, model))
        quizzes = []
        for item in data.get("quizzes") or []:
            if not isinstance(item, dict) or not item.get("question"):
                continue
            quizzes.append(Quiz.model_validate(item))
        if not quizzes:
            raise ResponseShapeError("模型回复中没有测验题目")
        return quizzes[:count]

    @classmethod
    def _to_storybook(cls, data: dict, request: StoryRequest) -> Storybook:
        try:
            return cls._build_storybook(normalize_keys(data), request)
        except ValidationError as e:
            raise ResponseShapeError(f"模型回复的故事结构不完整: {e.error_count()} 处错误") from e

    @staticmethod
    def _build_storybook(data: dict, request: StoryRequest) -> Storybook:
        pages = []
        for i, page in enumerate(data.get("pages") or []):
            if not isinstance(page, dict):
                continue
            page["page_number"] = i + 1
            pages.append(page)

        characters = [
            Character.model_validate(c)
            for c in data.get("characters") or []
            if isinstance(c, dict) and c.get("name")
        ]

        return Storybook.model_validate(
            {
                "title": data.get("title") or request.title,
                "target_age": request.target_age,
                "art_style": request.art_style,
                "theme": data.get("theme") or "",
                "pages": pages,
                "characters": expand_group_characters(characters),
                "key_objects": [k for k in data.get("key_objects") or [] if isinstance(k, dict) and k.get("name")],
                "educational_content": data.get("educational_content") or {},
            }
        )
