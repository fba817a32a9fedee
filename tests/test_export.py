"""导出与恢复测试"""

import pytest

from storybook_studio.core.export import export_storybook, restore_artifacts
from storybook_studio.core.models import CoverImage
from storybook_studio.services.media import BlobRegistry, parse_data_url, to_data_url


@pytest.fixture
def registry():
    return BlobRegistry()


@pytest.fixture
def illustrated_book(book, registry, make_png):
    book.characters[0].reference_image = to_data_url(make_png(), "image/png")
    book.characters[1].reference_image = "blob:storybook/expired"
    book.pages[0].illustration_image = registry.create(b"jpeg-bytes", "image/jpeg")
    book.pages[0].audio_url = registry.create(b"RIFF-audio", "audio/wav")
    book.cover_image = CoverImage(image_url=to_data_url(b"cover", "image/png"), prompt="cover")
    return book


class TestExport:
    @pytest.mark.asyncio
    async def test_export_writes_files(self, illustrated_book, registry, tmp_path):
        result = await export_storybook(illustrated_book, tmp_path / "book", registry=registry)

        names = sorted(p.relative_to(tmp_path / "book").as_posix() for p in result.files)
        assert names == [
            "audio/page_01.wav",
            "characters/character_01.png",
            "cover.png",
            "pages/page_01.jpg",
            "story.md",
            "story.txt",
        ]
        assert list(result.failed) == ["characters/character_02"]
        assert (tmp_path / "book" / "pages" / "page_01.jpg").read_bytes() == b"jpeg-bytes"
        assert (tmp_path / "book" / "story.txt").read_text(encoding="utf-8") == illustrated_book.to_text()

    @pytest.mark.asyncio
    async def test_restore(self, illustrated_book, registry, tmp_path):
        await export_storybook(illustrated_book, tmp_path, registry=registry)
        light = illustrated_book.lightweight_copy()

        restored = restore_artifacts(light, tmp_path)

        assert restored == 4
        assert parse_data_url(light.pages[0].illustration_image) == ("image/jpeg", b"jpeg-bytes")
        assert parse_data_url(light.pages[0].audio_url) == ("audio/wav", b"RIFF-audio")
        assert light.cover_image.image_url == to_data_url(b"cover", "image/png")
        assert light.characters[0].reference_image.startswith("data:image/png;base64,")
        assert light.characters[1].reference_image is None
        assert light.pages[1].illustration_image is None

    def test_restore_keeps_existing(self, book, tmp_path):
        (tmp_path / "characters").mkdir()
        (tmp_path / "characters" / "character_01.png").write_bytes(b"old")

        assert restore_artifacts(book, tmp_path) == 0
        assert book.characters[0].reference_image == "blob:storybook/rabbit"

    def test_restore_missing_directory(self, book, tmp_path):
        assert restore_artifacts(book, tmp_path / "nothing") == 0

    @pytest.mark.asyncio
    async def test_export_removes_stale_files(self, illustrated_book, registry, tmp_path):
        await export_storybook(illustrated_book, tmp_path, registry=registry)
        (tmp_path / "vocabulary").mkdir()
        (tmp_path / "vocabulary" / "word_01.png").write_bytes(b"old-word")
        illustrated_book.pages[0].illustration_image = registry.create(b"png-bytes", "image/png")
        illustrated_book.pages[0].audio_url = None
        illustrated_book.cover_image = None

        await export_storybook(illustrated_book, tmp_path, registry=registry)

        assert (tmp_path / "pages" / "page_01.png").read_bytes() == b"png-bytes"
        assert not (tmp_path / "pages" / "page_01.jpg").exists()
        assert not (tmp_path / "audio" / "page_01.wav").exists()
        assert not (tmp_path / "vocabulary" / "word_01.png").exists()
        assert not (tmp_path / "cover.png").exists()

        light = illustrated_book.lightweight_copy()
        assert restore_artifacts(light, tmp_path) == 2
        assert light.pages[0].audio_url is None
        assert light.cover_image is None

    @pytest.mark.asyncio
    async def test_export_keeps_file_when_reference_expired(self, book, tmp_path):
        (tmp_path / "characters").mkdir()
        (tmp_path / "characters" / "character_02.png").write_bytes(b"fox")

        result = await export_storybook(book, tmp_path, registry=BlobRegistry())

        assert "characters/character_02" in result.failed
        assert (tmp_path / "characters" / "character_02.png").read_bytes() == b"fox"
