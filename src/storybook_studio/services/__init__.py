"""服务模块 - Gemini 接口调用与单项生成"""

from .credentials import CredentialProvider
from .gemini_client import GeminiClient, GenerationResult
from .image_generators import (
    CharacterReferenceGenerator,
    CoverGenerator,
    IllustrationGenerator,
    VocabularyImageGenerator,
)
from .narration import NarrationGenerator
from .story_writer import StoryRequest, StoryWriter

__all__ = [
    "CredentialProvider",
    "GeminiClient",
    "GenerationResult",
    "CharacterReferenceGenerator",
    "CoverGenerator",
    "IllustrationGenerator",
    "VocabularyImageGenerator",
    "NarrationGenerator",
    "StoryRequest",
    "StoryWriter",
]
