"""数据模型定义"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

MIN_HEIGHT_CM = 50
MAX_HEIGHT_CM = 250
MAX_TOTAL_PAGES = 30


class TargetAge(str, Enum):
    """目标年龄段"""

    TODDLER = "4-5"
    PRESCHOOL = "5-7"
    EARLY_READER = "7-8"


class SizeClass(str, Enum):
    """关键物品大小分类"""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class SceneStructure(BaseModel):
    """结构化场景描述，所有字段都是自由文本"""

    characters: str = ""
    background: str = ""
    atmosphere: str = ""
    key_objects: str = ""
    spatial_layout: str = ""

    def is_empty(self) -> bool:
        return not any(self.model_dump().values())


class Page(BaseModel):
    """绘本页面"""

    page_number: int = Field(..., ge=1, description="页码，从1开始")
    text: str = Field(default="", description="页面正文")
    scene_description: str = Field(default="", description="英文场景描述")
    scene_structure: Optional[SceneStructure] = Field(None, description="结构化场景")
    illustration_image: Optional[str] = Field(None, description="插图引用")
    art_style: Optional[str] = Field(None, description="单页画风，覆盖绘本画风")
    edit_note: str = Field(default="", description="重新生成时的修改说明")
    audio_url: Optional[str] = Field(None, description="朗读音频引用")
    voice_config: Optional[str] = Field(None, description="朗读使用的声音")
    voice_model: Optional[str] = Field(None, description="朗读使用的模型")


class Character(BaseModel):
    """角色"""

    name: str = Field(..., description="角色名，在同一绘本内唯一")
    description: str = Field(default="", description="外貌描述（英文，用作生成提示词）")
    role: str = Field(default="기타", description="角色定位")
    height_cm: int = Field(default=120, description="身高（厘米）")
    reference_image: Optional[str] = Field(None, description="角色参考图引用")

    @field_validator("height_cm", mode="before")
    @classmethod
    def _clamp_height(cls, value):
        if value is None or value == "":
            return 120
        try:
            height = int(float(value))
        except (TypeError, ValueError):
            return 120
        return max(MIN_HEIGHT_CM, min(MAX_HEIGHT_CM, height))


class KeyObject(BaseModel):
    """关键物品"""

    name: str = Field(..., description="英文名称")
    korean: str = Field(default="", description="韩文名称")
    description: str = Field(default="", description="外观描述")
    size: SizeClass = Field(default=SizeClass.MEDIUM, description="大小分类")
    size_cm: Optional[float] = Field(None, description="大致尺寸（厘米）")
    example_sentence: str = Field(default="", description="例句")
    image_url: Optional[str] = Field(None, description="物品图片引用")

    @field_validator("size", mode="before")
    @classmethod
    def _normalize_size(cls, value):
        if isinstance(value, str) and value.lower() in {s.value for s in SizeClass}:
            return value.lower()
        if isinstance(value, SizeClass):
            return value
        return SizeClass.MEDIUM


class VocabularyItem(BaseModel):
    """学习单词"""

    word: str
    korean: str = ""


class EducationalContent(BaseModel):
    """教育内容"""

    symbols: list[str] = Field(default_factory=list, description="象征解读问题")
    activity: str = Field(default="", description="创意活动")
    vocabulary: list[VocabularyItem] = Field(default_factory=list, description="学习单词")

    @field_validator("vocabulary", mode="before")
    @classmethod
    def _coerce_vocabulary(cls, value):
        if not value:
            return []
        return [{"word": item, "korean": ""} if isinstance(item, str) else item for item in value]


class VocabularyImage(BaseModel):
    """单词卡片图片"""

    word: str
    korean: str = ""
    image_url: Optional[str] = None
    reused: bool = False


class Quiz(BaseModel):
    """阅读理解测验"""

    question: str
    options: list[str] = Field(default_factory=list)
    answer_index: int = 0
    explanation: str = ""


class CoverImage(BaseModel):
    """封面"""

    image_url: Optional[str] = None
    prompt: str = ""


class Storybook(BaseModel):
    """绘本"""

    id: str = Field(default_factory=lambda: str(int(datetime.now().timestamp() * 1000)))
    title: str = Field(..., description="绘本标题")
    target_age: TargetAge = Field(default=TargetAge.PRESCHOOL, description="目标年龄段")
    art_style: str = Field(default="", description="画风")
    theme: str = Field(default="", description="主题与寓意")
    pages: list[Page] = Field(default_factory=list)
    characters: list[Character] = Field(default_factory=list)
    key_objects: list[KeyObject] = Field(default_factory=list)
    educational_content: EducationalContent = Field(default_factory=EducationalContent)
    vocabulary_images: list[Optional[VocabularyImage]] = Field(default_factory=list)
    cover_image: Optional[CoverImage] = None
    quizzes: list[Quiz] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _renumber_pages(self):
        self.pages.sort(key=lambda p: p.page_number)
        for i, page in enumerate(self.pages):
            page.page_number = i + 1
        return self

    def page_art_style(self, page: Page) -> str:
        return page.art_style or self.art_style

    def characters_with_references(self) -> list[Character]:
        return [c for c in self.characters if c.reference_image]

    def previous_page(self, index: int) -> Optional[Page]:
        return self.pages[index - 1] if index > 0 else None

    def ensure_vocabulary_slots(self) -> list[Optional[VocabularyImage]]:
        """让单词图片列表与单词列表等长"""
        size = len(self.educational_content.vocabulary)
        if len(self.vocabulary_images) < size:
            self.vocabulary_images.extend([None] * (size - len(self.vocabulary_images)))
        return self.vocabulary_images

    def lightweight_copy(self) -> "Storybook":
        """生成去掉所有图片和音频引用的副本，用于持久化"""
        light = self.model_copy(deep=True)
        for character in light.characters:
            character.reference_image = None
        for page in light.pages:
            page.illustration_image = None
            page.audio_url = None
        for key_object in light.key_objects:
            key_object.image_url = None
        for vocab in light.vocabulary_images:
            if vocab is not None:
                vocab.image_url = None
        if light.cover_image is not None:
            light.cover_image.image_url = None
        return light

    def to_text(self) -> str:
        """导出全部正文"""
        lines = [
            self.title,
            "",
            f"대상 연령: {self.target_age.value}세",
            f"그림체: {self.art_style}",
            "",
            f"주제: {self.theme}",
            "",
            "=" * 50,
        ]
        blocks = [f"[페이지 {page.page_number}]\n{page.text}\n" for page in self.pages]
        return "\n".join(lines) + "\n\n" + "\n---\n\n".join(blocks)

    def to_markdown(self) -> str:
        """导出为Markdown格式"""
        lines = [
            f"# {self.title}",
            "",
            f"**대상 연령**: {self.target_age.value}세",
            f"**그림체**: {self.art_style}",
            "",
        ]
        if self.theme:
            lines.extend(["## 주제", self.theme, ""])

        if self.characters:
            lines.extend(["## 등장인물", ""])
            for character in self.characters:
                lines.append(f"- **{character.name}** ({character.role}, {character.height_cm}cm): {character.description}")
            lines.append("")

        for page in self.pages:
            lines.extend([f"## 페이지 {page.page_number}", "", page.text, ""])
            if page.scene_description:
                lines.extend([f"*{page.scene_description}*", ""])

        vocabulary = self.educational_content.vocabulary
        if vocabulary:
            lines.extend(["## 단어", ""])
            for item in vocabulary:
                lines.append(f"- {item.word}" + (f" ({item.korean})" if item.korean else ""))
            lines.append("")

        if self.quizzes:
            lines.extend(["## 퀴즈", ""])
            for i, quiz in enumerate(self.quizzes, start=1):
                lines.append(f"{i}. {quiz.question}")
                for j, option in enumerate(quiz.options):
                    mark = " ✓" if j == quiz.answer_index else ""
                    lines.append(f"   - {option}{mark}")
            lines.append("")

        return "\n".join(lines)
