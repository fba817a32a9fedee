"""导出 - 把绘本的文本和所有图片、音频写入目录，或从导出目录恢复引用"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from ..exceptions import MediaError
from ..services.media import MIME_EXTENSIONS, BlobRegistry, extension_for, resolve_artifact, to_data_url
from .models import CoverImage, Storybook, VocabularyImage

logger = logging.getLogger(__name__)

EXTENSION_MIMES = {ext: mime for mime, ext in MIME_EXTENSIONS.items()}
ARTIFACT_DIRS = ("characters", "pages", "audio", "key_objects", "vocabulary")


@dataclass
class ExportResult:
    """导出结果"""

    directory: Path
    files: list[Path] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def _artifact_slots(book: Storybook) -> list[tuple[str, str | None]]:
    """(相对路径主干, 引用) 列表，路径不含扩展名"""
    slots: list[tuple[str, str | None]] = []
    for i, character in enumerate(book.characters):
        slots.append((f"characters/character_{i + 1:02d}", character.reference_image))
    for page in book.pages:
        slots.append((f"pages/page_{page.page_number:02d}", page.illustration_image))
        slots.append((f"audio/page_{page.page_number:02d}", page.audio_url))
    for i, key_object in enumerate(book.key_objects):
        slots.append((f"key_objects/object_{i + 1:02d}", key_object.image_url))
    for i, vocab in enumerate(book.vocabulary_images):
        slots.append((f"vocabulary/word_{i + 1:02d}", vocab.image_url if vocab else None))
    if book.cover_image is not None:
        slots.append(("cover", book.cover_image.image_url))
    return slots


async def export_storybook(
    book: Storybook,
    directory: str | Path,
    client: httpx.AsyncClient | None = None,
    registry: BlobRegistry | None = None,
) -> ExportResult:
    """导出绘本

    写入 story.txt、story.md 以及所有已生成的图片和音频。
    单个文件失败只记录，不中断导出。

    Args:
        book: 绘本
        directory: 目标目录
        client: 下载远程图片使用的 HTTP 客户端
        registry: blob URL 注册表

    Returns:
        导出结果
    """
    out = Path(directory)
    out.mkdir(parents=True, exist_ok=True)
    result = ExportResult(directory=out)

    for name, content in (("story.txt", book.to_text()), ("story.md", book.to_markdown())):
        path = out / name
        path.write_text(content, encoding="utf-8")
        result.files.append(path)

    for stem, url in _artifact_slots(book):
        if not url:
            continue
        try:
            data, mime_type = await resolve_artifact(url, client=client, registry=registry)
        except MediaError as e:
            logger.warning("导出 %s 失败: %s", stem, e)
            result.failed[stem] = str(e)
            continue
        path = out / f"{stem}.{extension_for(mime_type)}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        result.files.append(path)

    removed = _prune(out, set(result.files), set(result.failed))
    logger.info("已导出 %d 个文件到 %s", len(result.files), out)
    if removed:
        logger.info("删除了 %d 个不再被引用的旧文件", removed)
    return result


def _prune(directory: Path, written: set[Path], failed: set[str]) -> int:
    """删除绘本已不再引用的旧图片和音频，避免下次恢复时被读回

    导出失败的引用保留原有文件。
    """
    candidates = list(directory.glob("cover.*"))
    for name in ARTIFACT_DIRS:
        candidates.extend((directory / name).glob("*.*"))

    removed = 0
    for path in candidates:
        if path.suffix.lstrip(".") not in EXTENSION_MIMES or path in written:
            continue
        stem = path.relative_to(directory).with_suffix("").as_posix()
        if stem in failed:
            continue
        path.unlink()
        removed += 1
    return removed


def _find_file(directory: Path, stem: str) -> Path | None:
    base = directory / stem
    if not base.parent.exists():
        return None
    for candidate in sorted(base.parent.glob(f"{base.name}.*")):
        if candidate.suffix.lstrip(".") in EXTENSION_MIMES:
            return candidate
    return None


def _load(directory: Path, stem: str) -> str | None:
    path = _find_file(directory, stem)
    if path is None:
        return None
    return to_data_url(path.read_bytes(), EXTENSION_MIMES[path.suffix.lstrip(".")])


def restore_artifacts(book: Storybook, directory: str | Path) -> int:
    """从导出目录恢复缺失的图片和音频引用（以 data URL 形式）

    Returns:
        恢复的引用数量
    """
    directory = Path(directory)
    if not directory.exists():
        return 0

    restored = 0

    def fill(current: str | None, stem: str) -> str | None:
        nonlocal restored
        if current:
            return current
        loaded = _load(directory, stem)
        if loaded:
            restored += 1
        return loaded

    for i, character in enumerate(book.characters):
        character.reference_image = fill(character.reference_image, f"characters/character_{i + 1:02d}")
    for page in book.pages:
        page.illustration_image = fill(page.illustration_image, f"pages/page_{page.page_number:02d}")
        page.audio_url = fill(page.audio_url, f"audio/page_{page.page_number:02d}")
    for i, key_object in enumerate(book.key_objects):
        key_object.image_url = fill(key_object.image_url, f"key_objects/object_{i + 1:02d}")

    slots = book.ensure_vocabulary_slots()
    for i, item in enumerate(book.educational_content.vocabulary):
        existing = slots[i]
        image_url = fill(existing.image_url if existing else None, f"vocabulary/word_{i + 1:02d}")
        if image_url and existing is None:
            slots[i] = VocabularyImage(word=item.word, korean=item.korean, image_url=image_url)
        elif existing is not None:
            existing.image_url = image_url

    cover_url = fill(book.cover_image.image_url if book.cover_image else None, "cover")
    if cover_url and book.cover_image is None:
        book.cover_image = CoverImage(image_url=cover_url)
    elif book.cover_image is not None:
        book.cover_image.image_url = cover_url

    if restored:
        logger.info("从 %s 恢复了 %d 个引用", directory, restored)
    return restored
