"""批量生成 - 并行或顺序地为多项内容生成图片和音频"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from ..exceptions import MissingReferenceError
from ..services.gemini_client import GenerationResult
from ..services.image_generators import CharacterReferenceGenerator, IllustrationGenerator, VocabularyImageGenerator
from ..services.narration import NarrationGenerator
from .models import Storybook

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[int, int], bool]
PersistCallback = Callable[[], None]
ProgressCallback = Callable[[int, GenerationResult], None]


class GenerationMode(str, Enum):
    """批量生成模式"""

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


@dataclass
class BatchReport:
    """批量生成结果统计"""

    total: int = 0
    succeeded: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    skipped: list[int] = field(default_factory=list)
    cancelled: bool = False

    def record(self, index: int, result: GenerationResult | BaseException) -> None:
        if isinstance(result, BaseException):
            self.failed[index] = str(result) or type(result).__name__
        elif result.success:
            self.succeeded.append(index)
        else:
            self.failed[index] = result.error or "未知错误"

    def summary(self) -> str:
        if self.cancelled:
            return "已取消"
        if not self.total:
            return "没有需要生成的内容"
        text = f"成功 {len(self.succeeded)} 个, 失败 {len(self.failed)} 个"
        if self.skipped:
            text += f", 跳过 {len(self.skipped)} 个"
        return text


def estimate_seconds(count: int, mode: GenerationMode, concurrency: int = 5, seconds_per_item: int = 8) -> int:
    """估算批量生成耗时

    并行模式按 concurrency 个一组计算，顺序模式逐个累加。
    """
    if count <= 0:
        return 0
    if mode == GenerationMode.PARALLEL:
        return math.ceil(count / max(concurrency, 1)) * seconds_per_item
    return count * seconds_per_item


class BatchOrchestrator:
    """批量生成编排

    - 并行模式: 所有任务同时发出，等待全部结束，单个失败不影响其他任务
    - 顺序模式: 按页码依次生成，每页使用上一页插图作为参考，每成功一页保存一次

    单项失败只记录在 BatchReport 中，之后可以单独重试。
    """

    def __init__(
        self,
        characters: CharacterReferenceGenerator,
        illustrations: IllustrationGenerator,
        vocabulary: VocabularyImageGenerator,
        narration: NarrationGenerator,
        persist: PersistCallback | None = None,
        confirm: ConfirmCallback | None = None,
        on_progress: ProgressCallback | None = None,
        concurrency: int = 5,
        seconds_per_item: int = 8,
    ):
        self.characters = characters
        self.illustrations = illustrations
        self.vocabulary = vocabulary
        self.narration = narration
        self.persist = persist or (lambda: None)
        self.confirm = confirm
        self.on_progress = on_progress
        self.concurrency = concurrency
        self.seconds_per_item = seconds_per_item

    def estimate(self, count: int, mode: GenerationMode) -> int:
        return estimate_seconds(count, mode, self.concurrency, self.seconds_per_item)

    def _confirmed(self, count: int, mode: GenerationMode) -> bool:
        if self.confirm is None:
            return True
        return self.confirm(count, self.estimate(count, mode))

    def _progress(self, index: int, result: GenerationResult | BaseException) -> None:
        if self.on_progress is not None and isinstance(result, GenerationResult):
            self.on_progress(index, result)

    async def _run_parallel(
        self,
        indices: list[int],
        make_call: Callable[[int], Awaitable[GenerationResult]],
        report: BatchReport,
    ) -> BatchReport:
        async def run(index: int) -> GenerationResult:
            result = await make_call(index)
            self._progress(index, result)
            return result

        results = await asyncio.gather(*(run(i) for i in indices), return_exceptions=True)
        for index, result in zip(indices, results):
            if isinstance(result, BaseException):
                logger.error("第 %d 项生成异常: %s", index + 1, result)
            report.record(index, result)
        self.persist()
        return report

    async def generate_all_illustrations(self, book: Storybook, mode: GenerationMode) -> BatchReport:
        """为所有缺少插图的页面生成插图

        Raises:
            MissingReferenceError: 没有任何角色参考图
        """
        if not book.characters_with_references():
            raise MissingReferenceError("请先生成角色参考图")

        pending = [i for i, page in enumerate(book.pages) if not page.illustration_image]
        report = BatchReport(total=len(pending), skipped=[i for i in range(len(book.pages)) if i not in pending])
        if not pending:
            return report
        if not self._confirmed(len(pending), mode):
            report.cancelled = True
            return report

        logger.info("批量生成插图: %d 页, %s 模式, 预计 %d 秒", len(pending), mode.value, self.estimate(len(pending), mode))

        if mode == GenerationMode.PARALLEL:
            await self._run_parallel(
                pending,
                lambda i: self.illustrations.generate(book, i, include_previous=False),
                report,
            )
        else:
            for index in pending:
                try:
                    result = await self.illustrations.generate(book, index, include_previous=True)
                except Exception as e:
                    logger.error("第 %d 页插图生成异常: %s", index + 1, e)
                    report.record(index, e)
                    continue
                report.record(index, result)
                self._progress(index, result)
                if result.success:
                    self.persist()

        logger.info("插图批量生成完成: %s", report.summary())
        return report

    async def generate_all_character_references(self, book: Storybook) -> BatchReport:
        """并行为所有缺少参考图的角色生成参考图"""
        pending = [i for i, c in enumerate(book.characters) if not c.reference_image]
        report = BatchReport(total=len(pending), skipped=[i for i in range(len(book.characters)) if i not in pending])
        if not pending:
            return report
        if not self._confirmed(len(pending), GenerationMode.PARALLEL):
            report.cancelled = True
            return report

        logger.info("批量生成角色参考图: %d 个", len(pending))
        await self._run_parallel(pending, lambda i: self.characters.generate(book, i), report)
        logger.info("角色参考图批量生成完成: %s", report.summary())
        return report

    async def generate_all_vocabulary_images(self, book: Storybook) -> BatchReport:
        """并行生成所有单词卡片"""
        slots = book.ensure_vocabulary_slots()
        pending = [i for i, slot in enumerate(slots) if slot is None or not slot.image_url]
        report = BatchReport(total=len(pending), skipped=[i for i in range(len(slots)) if i not in pending])
        if not pending:
            return report
        if not self._confirmed(len(pending), GenerationMode.PARALLEL):
            report.cancelled = True
            return report

        logger.info("批量生成单词卡片: %d 个", len(pending))
        await self._run_parallel(pending, lambda i: self.vocabulary.generate(book, i), report)
        logger.info("单词卡片批量生成完成: %s", report.summary())
        return report

    async def generate_all_narration(self, book: Storybook) -> BatchReport:
        """按页码顺序为缺少音频的页面生成朗读"""
        pending = [i for i, page in enumerate(book.pages) if not page.audio_url and page.text.strip()]
        report = BatchReport(total=len(pending), skipped=[i for i in range(len(book.pages)) if i not in pending])
        if not pending:
            return report
        if not self._confirmed(len(pending), GenerationMode.SEQUENTIAL):
            report.cancelled = True
            return report

        logger.info("批量生成朗读: %d 页", len(pending))
        for index in pending:
            result = await self.narration.generate(book, index)
            report.record(index, result)
            self._progress(index, result)
            if result.success:
                self.persist()
        logger.info("朗读批量生成完成: %s", report.summary())
        return report
