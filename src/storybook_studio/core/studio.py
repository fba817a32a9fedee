"""绘本工作室 - 把故事生成、图片生成、批量编排和持久化串起来"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from ..exceptions import MediaError, MissingReferenceError
from ..services.credentials import CredentialProvider
from ..services.gemini_client import GeminiClient, GenerationResult
from ..services.image_generators import (
    CharacterReferenceGenerator,
    CoverGenerator,
    IllustrationGenerator,
    VocabularyImageGenerator,
)
from ..services.media import register_upload
from ..services.narration import NarrationGenerator
from ..services.story_writer import StoryRequest, StoryWriter
from ..storage.backends import FileStorage, KeyValueStorage
from ..storage.local_store import StorybookStore
from ..utils.config import Settings
from .batch import BatchOrchestrator, BatchReport, ConfirmCallback, GenerationMode, estimate_seconds
from .export import ExportResult, export_storybook, restore_artifacts
from .models import Character, Quiz, Storybook
from .state import StudioState

logger = logging.getLogger(__name__)
console = Console()


class StorybookStudio:
    """儿童绘本工作室

    工作流程:
    1. 生成故事文本（标题、页面、角色、关键物品、学习单词）
    2. 生成角色参考图
    3. 并行或顺序生成每页插图
    4. 生成单词卡片、封面、朗读音频和测验
    5. 导出文本与所有图片

    每次成功生成后都会保存去掉图片的快照。
    """

    def __init__(
        self,
        settings: Settings | None = None,
        state: StudioState | None = None,
        storage: KeyValueStorage | None = None,
        client: GeminiClient | None = None,
        confirm: ConfirmCallback | None = None,
    ):
        self.settings = settings or Settings()
        self.storage = storage or FileStorage(self.settings.storage_path, self.settings.storage_quota_bytes)
        self.state = state or StudioState.load(StorybookStore(self.storage))
        self.client = client or GeminiClient(self.settings, CredentialProvider(self.settings, self.storage))
        self.writer = StoryWriter(self.client)
        self.confirm = confirm

    async def __aenter__(self) -> "StorybookStudio":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self):
        await self.client.close()

    @property
    def preferences(self):
        return self.state.preferences

    # 生成器按当前偏好设置创建，修改设置后立即生效
    def _characters(self) -> CharacterReferenceGenerator:
        return CharacterReferenceGenerator(self.client, self.preferences)

    def _illustrations(self) -> IllustrationGenerator:
        return IllustrationGenerator(self.client, self.preferences)

    def _vocabulary(self) -> VocabularyImageGenerator:
        return VocabularyImageGenerator(self.client, self.preferences)

    def _narration(self) -> NarrationGenerator:
        return NarrationGenerator(self.client, self.preferences)

    def _batch(self, progress: Progress | None = None, task_id=None) -> BatchOrchestrator:
        def advance(_index: int, _result: GenerationResult) -> None:
            if progress is not None:
                progress.advance(task_id)

        return BatchOrchestrator(
            characters=self._characters(),
            illustrations=self._illustrations(),
            vocabulary=self._vocabulary(),
            narration=self._narration(),
            persist=self.state.persist,
            on_progress=advance,
            concurrency=self.settings.parallel_concurrency,
            seconds_per_item=self.settings.seconds_per_image,
        )

    @contextmanager
    def _progress(self, description: str, total: int | None = None) -> Iterator[tuple[Progress, object]]:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(description, total=total)
            yield progress, task

    def _persist_on_success(self, result: GenerationResult) -> GenerationResult:
        if result.success:
            self.state.persist()
        return result

    # 故事

    def _with_model(self, request: StoryRequest) -> StoryRequest:
        if request.text_model:
            return request
        return request.model_copy(update={"text_model": self.preferences.story_model})

    async def create_storybook(self, request: StoryRequest) -> Storybook:
        """生成新绘本并加入集合"""
        request = self._with_model(request)
        with self._progress(f"正在创作《{request.title}》..."):
            book = await self.writer.write(request)
        self.state.add(book)
        logger.info("新绘本 %s 已加入集合 (共 %d 本)", book.id, len(self.state.storybooks))
        console.print(f"[green]绘本《{book.title}》生成完成! ({len(book.pages)} 页)[/green]")
        return book

    async def rewrite_storybook(self, book: Storybook, request: StoryRequest) -> Storybook:
        """保留角色重新生成故事，替换原绘本"""
        request = self._with_model(request)
        with self._progress(f"正在重新创作《{request.title}》..."):
            rewritten = await self.writer.rewrite(book, request)
        logger.info("绘本《%s》已重新生成, id 保持为 %s", rewritten.title, rewritten.id)
        return self.state.replace(rewritten)

    async def generate_quizzes(self, book: Storybook, count: int = 5) -> list[Quiz]:
        with self._progress("正在生成测验..."):
            book.quizzes = await self.writer.write_quizzes(book, count, model=self.preferences.story_model)
        self.state.persist()
        return book.quizzes

    # 单项生成

    async def generate_character(self, book: Storybook, index: int, description: str | None = None) -> GenerationResult:
        return self._persist_on_success(await self._characters().generate(book, index, description))

    async def generate_illustration(
        self,
        book: Storybook,
        index: int,
        edit_note: str = "",
        selected_references: Iterable[str] = (),
    ) -> GenerationResult:
        result = await self._illustrations().generate(book, index, edit_note, selected_references)
        return self._persist_on_success(result)

    async def generate_vocabulary_image(self, book: Storybook, index: int) -> GenerationResult:
        return self._persist_on_success(await self._vocabulary().generate(book, index))

    async def generate_key_object(self, book: Storybook, index: int) -> GenerationResult:
        return self._persist_on_success(await self._vocabulary().generate_key_object(book, index))

    async def generate_cover(self, book: Storybook) -> GenerationResult:
        generator = CoverGenerator(self.client, self.preferences)
        return self._persist_on_success(await generator.generate(book))

    async def generate_narration(self, book: Storybook, index: int, voice: str | None = None) -> GenerationResult:
        return self._persist_on_success(await self._narration().generate(book, index, voice))

    def upload_character_image(self, book: Storybook, index: int, path: str | Path) -> Character:
        """读取本地图片作为角色参考图"""
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise MediaError(f"无法读取文件 {path}: {e}") from e
        image_url = register_upload(data, self.client.registry)
        logger.info("角色 %s 使用上传的参考图 %s", book.characters[index].name, path.name)
        return self.state.set_character_image(book.id, index, image_url)

    # 批量生成
    # 确认在进度条出现之前完成，避免交互提示被进度条覆盖

    def _declined(self, count: int, mode: GenerationMode) -> bool:
        if self.confirm is None or count == 0:
            return False
        seconds = estimate_seconds(count, mode, self.settings.parallel_concurrency, self.settings.seconds_per_image)
        return not self.confirm(count, seconds)

    async def generate_all_characters(self, book: Storybook) -> BatchReport:
        pending = sum(1 for c in book.characters if not c.reference_image)
        if self._declined(pending, GenerationMode.PARALLEL):
            return BatchReport(total=pending, cancelled=True)
        with self._progress("正在生成角色参考图...", total=pending) as (progress, task):
            return await self._batch(progress, task).generate_all_character_references(book)

    async def generate_all_illustrations(self, book: Storybook, mode: GenerationMode) -> BatchReport:
        if not book.characters_with_references():
            raise MissingReferenceError("请先生成角色参考图")
        pending = sum(1 for p in book.pages if not p.illustration_image)
        if self._declined(pending, mode):
            return BatchReport(total=pending, cancelled=True)
        label = "并行" if mode == GenerationMode.PARALLEL else "顺序"
        with self._progress(f"正在{label}生成插图...", total=pending) as (progress, task):
            return await self._batch(progress, task).generate_all_illustrations(book, mode)

    async def generate_all_vocabulary(self, book: Storybook) -> BatchReport:
        pending = sum(1 for slot in book.ensure_vocabulary_slots() if slot is None or not slot.image_url)
        if self._declined(pending, GenerationMode.PARALLEL):
            return BatchReport(total=pending, cancelled=True)
        with self._progress("正在生成单词卡片...", total=pending) as (progress, task):
            return await self._batch(progress, task).generate_all_vocabulary_images(book)

    async def generate_all_narration(self, book: Storybook) -> BatchReport:
        pending = sum(1 for p in book.pages if not p.audio_url and p.text.strip())
        if self._declined(pending, GenerationMode.SEQUENTIAL):
            return BatchReport(total=pending, cancelled=True)
        with self._progress("正在生成朗读音频...", total=pending) as (progress, task):
            return await self._batch(progress, task).generate_all_narration(book)

    # 导出

    def book_directory(self, book: Storybook) -> Path:
        return Path(self.settings.output_dir) / book.id

    async def export(self, book: Storybook, directory: str | Path | None = None) -> ExportResult:
        """导出绘本，默认写入 output_dir/<绘本 id>/"""
        target = Path(directory) if directory else self.book_directory(book)
        return await export_storybook(book, target, client=self.client.client, registry=self.client.registry)

    def restore(self, book: Storybook, directory: str | Path | None = None) -> int:
        """从导出目录恢复快照中被去掉的图片和音频"""
        return restore_artifacts(book, Path(directory) if directory else self.book_directory(book))
