"""页面朗读音频生成"""

from __future__ import annotations

import logging

from ..core.models import Storybook
from ..prompts import PromptBuilder, build_prompt
from ..utils.config import GenerationPreferences
from .gemini_client import GeminiClient, GenerationResult

logger = logging.getLogger(__name__)


class NarrationGenerator:
    """使用 Gemini TTS 为页面正文生成朗读音频"""

    def __init__(
        self,
        client: GeminiClient,
        preferences: GenerationPreferences | None = None,
        prompt_builder: PromptBuilder = build_prompt,
    ):
        self.client = client
        self.preferences = preferences or GenerationPreferences()
        self.build_prompt = prompt_builder

    async def generate(self, book: Storybook, index: int, voice: str | None = None) -> GenerationResult:
        """生成第 index 页的朗读音频

        声音优先级: 参数 > 页面已保存的声音 > 偏好设置中的默认声音
        """
        page = book.pages[index]
        if not page.text.strip():
            return GenerationResult(success=False, error=f"第 {page.page_number} 页没有正文", attempts=0)

        voice = voice or page.voice_config or self.preferences.tts_voice
        model = self.preferences.tts_model
        text = self.build_prompt("narration", text=page.text, style=self.preferences.tts_style)

        logger.info("生成第 %d 页朗读: 声音 %s", page.page_number, voice)
        result = await self.client.generate_audio(text, voice, model=model)
        if result.success:
            page.audio_url = result.artifact_url
            page.voice_config = voice
            page.voice_model = model
        return result
