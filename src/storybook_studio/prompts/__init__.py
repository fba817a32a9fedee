"""Prompt 模板管理

模板以 .txt 文件保存在本目录，使用 str.format 渲染。
build_prompt(kind, **context) 是生成器使用的唯一入口，可以整体替换。
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from ..core.models import Character, KeyObject, Page, Storybook
    from ..utils.config import GenerationPreferences

# Prompt 模板目录
PROMPTS_DIR = Path(__file__).parent

PromptBuilder = Callable[..., str]

# 年龄段对应的写作要求
AGE_SETTINGS = {
    "4-5": {"word_count": "400-500", "sentence_length": "5-8", "vocabulary": "쉬운"},
    "5-7": {"word_count": "500-800", "sentence_length": "8-12", "vocabulary": "보통"},
    "7-8": {"word_count": "800-1000", "sentence_length": "10-15", "vocabulary": "다소 어려운"},
}

STRICT_NO_TEXT = (
    "**CRITICAL - NO TEXT:** Do NOT include ANY text, labels, words, letters, captions, titles, "
    "speech bubbles, or text overlays in the image. Absolutely NO TEXT of any kind. Pure illustration only."
)
SOFT_NO_TEXT = (
    "**IMPORTANT:** Do NOT include any text, labels, words, letters, or captions in the image. "
    "Pure illustration only."
)


def load_prompt(name: str) -> str:
    """加载 prompt 模板

    Args:
        name: prompt 文件名（不含扩展名）

    Returns:
        prompt 模板内容
    """
    prompt_file = PROMPTS_DIR / f"{name}.txt"
    if not prompt_file.exists():
        raise FileNotFoundError(f"Prompt template not found: {prompt_file}")
    return prompt_file.read_text(encoding="utf-8")


def render_prompt(name: str, **kwargs) -> str:
    """加载并渲染 prompt 模板

    Args:
        name: prompt 文件名（不含扩展名）
        **kwargs: 模板变量

    Returns:
        渲染后的 prompt
    """
    template = load_prompt(name)
    return template.format(**kwargs)


def _section(title: str, body: str) -> str:
    return f"\n\n**{title}:** {body}" if body else ""


def _no_text(preferences: GenerationPreferences) -> str:
    return STRICT_NO_TEXT if preferences.enforce_no_text else SOFT_NO_TEXT


def _story_prompt(
    title: str,
    target_age: str,
    total_pages: int = 0,
    reference_content: str = "",
    existing_characters: list[Character] | None = None,
) -> str:
    settings = AGE_SETTINGS.get(target_age, AGE_SETTINGS["5-7"])
    page_rule = f"정확히 {total_pages}페이지 분량" if total_pages else "10-12페이지 분량"

    reference = ""
    if reference_content.strip():
        reference = f"\n참고 내용 (이 내용을 바탕으로 이야기를 구성하세요):\n{reference_content.strip()}\n"

    characters = ""
    if existing_characters:
        listed = "\n".join(f"- {c.name} ({c.role}): {c.description}" for c in existing_characters)
        characters = f"\n다음 등장인물을 그대로 사용하세요 (이름과 설명을 바꾸지 마세요):\n{listed}\n"

    return render_prompt(
        "story",
        title=title,
        target_age=target_age,
        word_count=settings["word_count"],
        sentence_length=settings["sentence_length"],
        vocabulary=settings["vocabulary"],
        page_rule=page_rule,
        reference=reference,
        characters=characters,
    )


def _character_prompt(
    description: str,
    art_style: str,
    preferences: GenerationPreferences,
    regeneration: bool = False,
) -> str:
    return render_prompt(
        "character",
        description=description,
        regeneration_note=load_prompt("character_regeneration") if regeneration else "",
        art_style=art_style,
        aspect_ratio=preferences.aspect_ratio,
        additional=_section("Additional Instructions", preferences.additional_prompt),
        no_text=_no_text(preferences),
    )


def _story_context(book: Storybook, page: Page, previous_attached: bool) -> str:
    previous = [p for p in book.pages if p.page_number < page.page_number]
    if not previous:
        return ""

    history = "\n".join(f"Page {p.page_number}: {p.text}" for p in previous)
    last = previous[-1]
    previous_note = ""
    if previous_attached and last.illustration_image:
        previous_note = (
            f"\n\n**PREVIOUS PAGE REFERENCE (Page {last.page_number}):** The illustration from the "
            "immediately previous page is provided as a reference image. Keep the lighting, color "
            "palette and art style continuous with it."
        )
    return (
        f"\n\n**STORY CONTEXT - What happened before this scene:**\n{history}\n\n"
        f"**CURRENT PAGE {page.page_number}:** {page.text}{previous_note}\n\n"
        "**CRITICAL:** The illustration MUST reflect the current page state. If a character has "
        "transformed or changed, draw them in their NEW form."
    )


def _scene_details(page: Page) -> str:
    scene = page.scene_structure
    if scene is None or scene.is_empty():
        return ""
    lines = []
    if scene.characters:
        lines.append(f"- **Characters & Actions:** {scene.characters}")
    if scene.background:
        lines.append(f"- **Background Setting:** {scene.background}")
    if scene.atmosphere:
        lines.append(f"- **Mood & Atmosphere:** {scene.atmosphere}")
    if scene.key_objects:
        lines.append(f"- **Key Objects:** {scene.key_objects}")
    if scene.spatial_layout:
        lines.append(f"- **Spatial Layout:** {scene.spatial_layout}")
    return "\n\n**Scene Structure:**\n" + "\n".join(lines)


def _character_directive(characters: list[Character], preferences: GenerationPreferences) -> str:
    if not characters:
        return ""
    lines = ["\n\n**Character References (MUST FOLLOW EXACTLY):**"]
    if preferences.enforce_character_consistency:
        lines.append(
            "Recreate each character exactly as in the reference images: facial features, body "
            "proportions, clothing, colors and hairstyle must match."
        )
    for i, character in enumerate(characters, start=1):
        lines.append(f"{i}. **{character.name}** (height {character.height_cm}cm): {character.description}")
    return "\n".join(lines)


def _illustration_prompt(
    book: Storybook,
    page: Page,
    characters: list[Character],
    preferences: GenerationPreferences,
    edit_note: str = "",
    regeneration: bool = False,
    extra_references: int = 0,
    previous_attached: bool = False,
) -> str:
    regeneration_note = ""
    if regeneration and edit_note:
        regeneration_note = (
            "\n\n**REGENERATION MODE:** The previous version of this illustration is provided as a "
            "reference image. Keep its composition and style, then apply the modification request."
        )

    edit = ""
    if edit_note:
        edit = (
            f"\n\n**Important Modification Request:** {edit_note}\n"
            "**Note:** Apply this modification while keeping other elements consistent with the reference images."
        )

    extra = ""
    if extra_references:
        extra = (
            f"\n\n**Additional References:** {extra_references} extra reference image(s) from other pages "
            "or key objects are attached. Use them for object and setting consistency."
        )

    return render_prompt(
        "illustration",
        story_context=_story_context(book, page, previous_attached),
        scene_description=page.scene_description or page.text,
        scene_details=_scene_details(page),
        character_info=_character_directive(characters, preferences),
        regeneration_note=regeneration_note,
        edit_note=edit,
        extra_references=extra,
        art_style=book.page_art_style(page),
        aspect_ratio=preferences.aspect_ratio,
        additional=_section("Additional Instructions", preferences.additional_prompt),
        no_text=_no_text(preferences),
    )


def _vocabulary_prompt(
    word: str,
    korean: str,
    art_style: str,
    preferences: GenerationPreferences,
    key_object: KeyObject | None = None,
) -> str:
    label = f"{word} ({korean})" if korean else word
    description = key_object.description if key_object and key_object.description else ""
    return render_prompt(
        "vocabulary",
        label=label,
        word=word,
        description=_section("Appearance", description),
        art_style=art_style,
        additional=_section("Additional Requirements", preferences.additional_prompt),
        no_text=_no_text(preferences),
    )


def _key_object_prompt(key_object: KeyObject, art_style: str, preferences: GenerationPreferences) -> str:
    size = key_object.size.value
    if key_object.size_cm:
        size = f"{size}, about {key_object.size_cm:g}cm"
    return render_prompt(
        "key_object",
        name=key_object.name,
        korean=key_object.korean,
        description=key_object.description or key_object.name,
        size=size,
        art_style=art_style,
        additional=_section("Additional Requirements", preferences.additional_prompt),
        no_text=_no_text(preferences),
    )


def _cover_prompt(book: Storybook, characters: list[Character], preferences: GenerationPreferences) -> str:
    return render_prompt(
        "cover",
        title=book.title,
        theme=book.theme or book.title,
        character_info=_character_directive(characters, preferences),
        art_style=book.art_style,
        aspect_ratio=preferences.aspect_ratio,
        additional=_section("Additional Instructions", preferences.additional_prompt),
        no_text=_no_text(preferences),
    )


def _quiz_prompt(book: Storybook, count: int = 5) -> str:
    story = "\n".join(f"{p.page_number}. {p.text}" for p in book.pages)
    return render_prompt("quiz", title=book.title, target_age=book.target_age.value, story=story, count=count)


def _narration_prompt(text: str, style: str = "") -> str:
    if not style:
        return text
    return render_prompt("narration", style=style, text=text).strip()


_BUILDERS: dict[str, PromptBuilder] = {
    "story": _story_prompt,
    "character": _character_prompt,
    "illustration": _illustration_prompt,
    "vocabulary": _vocabulary_prompt,
    "key_object": _key_object_prompt,
    "cover": _cover_prompt,
    "quiz": _quiz_prompt,
    "narration": _narration_prompt,
}


def build_prompt(kind: str, **context) -> str:
    """构建指定类型的 prompt

    Args:
        kind: story / character / illustration / vocabulary / key_object / cover / quiz / narration
        **context: 对应模板需要的上下文

    Returns:
        完整的 prompt 文本
    """
    builder = _BUILDERS.get(kind)
    if builder is None:
        raise ValueError(f"未知的 prompt 类型: {kind}")
    return builder(**context)
