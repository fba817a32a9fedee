"""测试公共夹具"""

import io

import pytest
from PIL import Image

from storybook_studio.core.models import Character, KeyObject, Page, SceneStructure, Storybook
from storybook_studio.utils.config import Settings


def _png(width: int = 32, height: int = 16, color: str = "red") -> bytes:
    """生成一张真实的 PNG 图片"""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def settings():
    return Settings(gemini_api_key="test-key", _env_file=None)


@pytest.fixture
def book():
    """三页、两个角色的绘本，角色都已有参考图"""
    return Storybook(
        id="1700000000000",
        title="용감한 토끼",
        art_style="수채화",
        theme="용기",
        pages=[
            Page(page_number=1, text="토끼가 숲에서 당근을 발견했어.", scene_description="A rabbit finds a carrot"),
            Page(
                page_number=2,
                text="여우가 나타났어.",
                scene_description="A fox appears",
                scene_structure=SceneStructure(characters="Fox looks at the carrot"),
            ),
            Page(page_number=3, text="둘은 친구가 되었구나.", scene_description="They become friends"),
        ],
        characters=[
            Character(name="토끼", description="White rabbit with a blue scarf", reference_image="blob:storybook/rabbit"),
            Character(name="Fox", description="Orange fox with green eyes", reference_image="blob:storybook/fox"),
        ],
        key_objects=[KeyObject(name="Carrot", korean="당근", description="A long orange carrot", size="small")],
        educational_content={"vocabulary": ["carrot", {"word": "fox", "korean": "여우"}]},
    )


@pytest.fixture
def make_png():
    return _png
