"""命令行测试"""

import pytest
from typer.testing import CliRunner

from storybook_studio import __version__
from storybook_studio.cli import app
from storybook_studio.core.models import Page, Storybook
from storybook_studio.storage import FileStorage, StorybookStore
from storybook_studio.utils.config import get_settings

runner = CliRunner()


@pytest.fixture
def env(tmp_path, monkeypatch):
    """把存储和输出目录指向临时目录"""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setenv("STORAGE_PATH", str(tmp_path / "storage.json"))
    monkeypatch.setenv("OUTPUT_DIR", str(tmp_path / "output"))
    get_settings.cache_clear()
    yield tmp_path
    get_settings.cache_clear()


def _seed(tmp_path) -> Storybook:
    book = Storybook(id="42", title="토끼", pages=[Page(page_number=1, text="토끼가 뛰었어.")])
    StorybookStore(FileStorage(tmp_path / "storage.json")).save([book])
    return book


class TestCli:
    def test_version(self):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    @pytest.mark.parametrize("pages", ["31", "100"])
    def test_create_rejects_page_count(self, env, pages):
        result = runner.invoke(app, ["create", "토끼", "--pages", pages])

        assert result.exit_code == 1
        assert "参数错误" in result.output

    def test_list_empty(self, env):
        result = runner.invoke(app, ["list"])

        assert result.exit_code == 0
        assert "还没有绘本" in result.output

    def test_list_and_show(self, env):
        _seed(env)

        listed = runner.invoke(app, ["list"])
        shown = runner.invoke(app, ["show", "42"])

        assert "토끼" in listed.output
        assert shown.exit_code == 0
        assert "토끼가 뛰었어." in shown.output

    def test_rename_and_delete(self, env):
        _seed(env)
        store = StorybookStore(FileStorage(env / "storage.json"))

        assert runner.invoke(app, ["rename", "42", "거북이"]).exit_code == 0
        assert store.load()[0].title == "거북이"

        assert runner.invoke(app, ["delete", "42", "--yes"]).exit_code == 0
        assert store.load() == []

    def test_unknown_book(self, env):
        result = runner.invoke(app, ["show", "missing"])

        assert result.exit_code == 1

    def test_illustrations_without_characters(self, env):
        _seed(env)

        result = runner.invoke(app, ["illustrations", "42", "--yes"])

        assert result.exit_code == 1
        assert "角色参考图" in result.output

    def test_api_key(self, env):
        assert runner.invoke(app, ["api-key", "custom"]).exit_code == 0
        assert FileStorage(env / "storage.json").get_item("gemini_api_key") == "custom"

    def test_prefs_update_and_reset(self, env):
        store = StorybookStore(FileStorage(env / "storage.json"))

        result = runner.invoke(app, ["prefs", "aspect_ratio=1:1", "enforce_no_text=false"])
        assert result.exit_code == 0
        assert store.load_preferences().aspect_ratio == "1:1"
        assert store.load_preferences().enforce_no_text is False

        assert runner.invoke(app, ["prefs", "--reset"]).exit_code == 0
        assert store.load_preferences().aspect_ratio == "16:9"

    def test_prefs_unknown_key(self, env):
        result = runner.invoke(app, ["prefs", "colour=red"])

        assert result.exit_code == 1

    def test_character_editing(self, env, make_png):
        _seed(env)
        store = StorybookStore(FileStorage(env / "storage.json"))
        image = env / "owl.png"
        image.write_bytes(make_png())
        saved = env / "output" / "42" / "characters" / "character_01.png"

        added = runner.invoke(app, ["add-character", "42", "Owl", "--description", "Grey owl with glasses"])
        assert added.exit_code == 0
        assert [c.name for c in store.load()[0].characters] == ["Owl"]

        assert runner.invoke(app, ["rename-character", "42", "1", "Wise Owl"]).exit_code == 0
        assert store.load()[0].characters[0].name == "Wise Owl"

        assert runner.invoke(app, ["upload-character", "42", "1", str(image)]).exit_code == 0
        assert saved.read_bytes() == make_png()

        assert runner.invoke(app, ["remove-character", "42", "1", "--yes"]).exit_code == 0
        assert store.load()[0].characters == []
        assert not saved.exists()

    def test_character_editing_errors(self, env):
        _seed(env)
        notes = env / "notes.txt"
        notes.write_text("hello", encoding="utf-8")

        empty = runner.invoke(app, ["add-character", "42", "  ", "--description", "Grey owl"])
        out_of_range = runner.invoke(app, ["rename-character", "42", "3", "Owl"])
        runner.invoke(app, ["add-character", "42", "Owl", "--description", "Grey owl"])
        not_image = runner.invoke(app, ["upload-character", "42", "1", str(notes)])

        assert empty.exit_code == 1
        assert out_of_range.exit_code == 1
        assert not_image.exit_code == 1
        assert "图片" in not_image.output

    def test_edit_page_and_word(self, env):
        book = Storybook(
            id="7",
            title="거북이",
            pages=[Page(page_number=1, text="거북이가 걸었어.")],
            educational_content={"vocabulary": ["turtle"]},
        )
        store = StorybookStore(FileStorage(env / "storage.json"))
        store.save([book])

        assert runner.invoke(app, ["edit-page", "7", "1", "거북이가 천천히 걸었어."]).exit_code == 0
        assert runner.invoke(app, ["edit-word", "7", "1", "--korean", "거북이"]).exit_code == 0
        assert runner.invoke(app, ["edit-page", "7", "1", "  "]).exit_code == 1
        assert runner.invoke(app, ["edit-word", "7", "2", "--word", "shell"]).exit_code == 1

        loaded = store.load()[0]
        assert loaded.pages[0].text == "거북이가 천천히 걸었어."
        vocabulary = loaded.educational_content.vocabulary[0]
        assert (vocabulary.word, vocabulary.korean) == ("turtle", "거북이")
        assert "거북이가 천천히 걸었어." in (env / "output" / "7" / "story.txt").read_text(encoding="utf-8")
