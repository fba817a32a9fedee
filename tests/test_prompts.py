"""Prompt 构建测试"""

import pytest

from storybook_studio.core.models import KeyObject, SceneStructure
from storybook_studio.prompts import SOFT_NO_TEXT, STRICT_NO_TEXT, build_prompt, load_prompt
from storybook_studio.utils.config import GenerationPreferences


class TestBuildPrompt:
    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            build_prompt("poster")

    def test_missing_template(self):
        with pytest.raises(FileNotFoundError):
            load_prompt("missing")

    @pytest.mark.parametrize("pages,rule", [(0, "10-12페이지 분량"), (8, "정확히 8페이지 분량")])
    def test_story_page_rule(self, pages, rule):
        prompt = build_prompt("story", title="토끼", target_age="4-5", total_pages=pages)

        assert rule in prompt
        assert '"title": "동화책 제목"' in prompt
        assert "400-500" in prompt

    def test_character_regeneration(self):
        preferences = GenerationPreferences()
        first = build_prompt("character", description="Red fox", art_style="수채화", preferences=preferences)
        again = build_prompt(
            "character", description="Red fox", art_style="수채화", preferences=preferences, regeneration=True
        )

        assert "Red fox" in first
        assert len(again) > len(first)

    def test_illustration_section_order(self, book):
        """故事背景、场景、结构、角色、修改说明按固定顺序出现"""
        page = book.pages[1]
        page.scene_structure = SceneStructure(characters="Fox looks at the carrot", background="Forest")
        book.pages[0].illustration_image = "prev"

        prompt = build_prompt(
            "illustration",
            book=book,
            page=page,
            characters=book.characters,
            preferences=GenerationPreferences(additional_prompt="pastel colors"),
            edit_note="더 밝게",
            regeneration=True,
            extra_references=2,
            previous_attached=True,
        )

        markers = [
            "STORY CONTEXT",
            "Page 1: 토끼가 숲에서 당근을 발견했어.",
            "PREVIOUS PAGE REFERENCE",
            "**Main Scene Description:** A fox appears",
            "**Scene Structure:**",
            "**Character References (MUST FOLLOW EXACTLY):**",
            "1. **토끼** (height 120cm)",
            "REGENERATION MODE",
            "**Important Modification Request:** 더 밝게",
            "2 extra reference image(s)",
            "수채화 style",
            "pastel colors",
            STRICT_NO_TEXT,
        ]
        positions = [prompt.index(marker) for marker in markers]
        assert positions == sorted(positions)

    def test_first_page_has_no_story_context(self, book):
        prompt = build_prompt(
            "illustration", book=book, page=book.pages[0], characters=[], preferences=GenerationPreferences()
        )

        assert "STORY CONTEXT" not in prompt
        assert "Character References" not in prompt

    def test_no_text_directive(self):
        soft = build_prompt(
            "vocabulary",
            word="apple",
            korean="사과",
            art_style="수채화",
            preferences=GenerationPreferences(enforce_no_text=False),
        )

        assert SOFT_NO_TEXT in soft
        assert STRICT_NO_TEXT not in soft

    def test_key_object(self):
        key_object = KeyObject(name="Lantern", korean="등불", description="Old brass lantern", size="small", size_cm=25.5)

        prompt = build_prompt("key_object", key_object=key_object, art_style="수채화", preferences=GenerationPreferences())

        assert "Lantern (등불)" in prompt
        assert "small, about 25.5cm" in prompt

    def test_quiz(self, book):
        prompt = build_prompt("quiz", book=book, count=3)

        assert "1. 토끼가 숲에서 당근을 발견했어." in prompt
        assert "3" in prompt

    def test_narration(self):
        assert build_prompt("narration", text="안녕", style="") == "안녕"
        assert build_prompt("narration", text="안녕", style="밝게") == "밝게: 안녕"
