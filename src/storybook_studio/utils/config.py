"""配置管理"""

from enum import Enum
from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ArtifactFormat(str, Enum):
    """生成结果的引用形式"""

    BLOB = "blob"  # 内存中的 blob: URL（客户端流程）
    DATA = "data"  # 自描述的 data: URL（服务端流程）


class GenerationPreferences(BaseModel):
    """生成偏好设置

    持久化在存储的 imageSettings 键下，是一个扁平的 JSON 对象。
    """

    aspect_ratio: str = "16:9"
    enforce_no_text: bool = True
    enforce_character_consistency: bool = True
    additional_prompt: str = ""
    image_quality: str = "high"

    # 各部分使用的模型
    story_model: str = "gemini-2.5-flash"
    image_model: str = "gemini-2.5-flash-image-preview"
    character_model: str = ""
    illustration_model: str = ""
    vocabulary_model: str = ""

    # 语音合成
    tts_model: str = "gemini-2.5-flash-preview-tts"
    tts_voice: str = "Kore"
    tts_style: str = Field(default="", description="朗读风格提示，如“温柔地讲故事”")

    def model_for(self, section: str) -> str:
        """获取某一部分的图片模型，未单独设置时回退到 image_model"""
        override = getattr(self, f"{section}_model", "")
        return override or self.image_model


class Settings(BaseSettings):
    """应用配置

    从环境变量或.env文件加载配置
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Google (Gemini)
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    # 请求与重试
    max_retries: int = 3
    request_timeout: float = 120.0
    artifact_format: ArtifactFormat = ArtifactFormat.BLOB

    # 参考图片压缩
    reference_max_width: int = 1024
    reference_jpeg_quality: int = 90

    # 批量生成时长估算
    parallel_concurrency: int = 5
    seconds_per_image: int = 8

    # 本地存储
    storage_path: str = "./output/storage.json"
    storage_quota_bytes: int = 5 * 1024 * 1024

    # 输出配置
    output_dir: str = "./output"
    log_level: str = "INFO"

    def generate_url(self, model: str) -> str:
        """获取模型的 generateContent 接口地址"""
        return f"{self.gemini_base_url.rstrip('/')}/models/{model}:generateContent"


@lru_cache
def get_settings() -> Settings:
    """获取配置单例"""
    return Settings()
