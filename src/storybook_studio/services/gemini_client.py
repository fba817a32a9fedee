"""Gemini 接口客户端 - 带指数退避重试的单次生成调用"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Awaitable, Callable, Iterable

import httpx
from pydantic import BaseModel
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from ..exceptions import (
    ApiStatusError,
    ConfigurationError,
    MediaError,
    ResponseShapeError,
    StorybookError,
    TransientServerError,
)
from ..utils.config import ArtifactFormat, Settings
from .credentials import CredentialProvider
from .media import BlobRegistry, blob_registry, parse_pcm_rate, pcm_to_wav, to_data_url, url_to_base64

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image-preview"
DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
DEFAULT_TTS_MODEL = "gemini-2.5-flash-preview-tts"

IMAGE_GENERATION_CONFIG = {
    "temperature": 1,
    "topK": 40,
    "topP": 0.95,
    "maxOutputTokens": 8192,
    "responseModalities": ["TEXT", "IMAGE"],
}


class GenerationResult(BaseModel):
    """单次生成调用的结果"""

    success: bool
    artifact_url: str | None = None
    mime_type: str | None = None
    text: str | None = None
    error: str | None = None
    attempts: int = 0
    prompt: str = ""
    reused: bool = False


def is_retryable(error: BaseException) -> bool:
    """默认的重试分类

    5xx 与未分类的异常（网络错误、超时等）重试；
    其他状态码、响应格式错误和配置错误不重试。
    """
    if isinstance(error, TransientServerError):
        return True
    if isinstance(error, StorybookError):
        return False
    return True


class GeminiClient:
    """Gemini generateContent 调用封装

    所有生成请求（图片、文本、语音）共用同一个重试流程:
    - 第 N 次（从 0 计）失败后等待 2^N 秒
    - 最多尝试 max_retries 次
    - 是否重试由 is_retryable 决定

    调用方拿到的永远是 GenerationResult，失败不会抛出异常。
    """

    def __init__(
        self,
        settings: Settings,
        credentials: CredentialProvider | None = None,
        registry: BlobRegistry | None = None,
        is_retryable: Callable[[BaseException], bool] = is_retryable,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.settings = settings
        self.credentials = credentials or CredentialProvider(settings)
        self.registry = registry or blob_registry
        self.is_retryable = is_retryable
        self.sleep = sleep
        self.client = httpx.AsyncClient(timeout=settings.request_timeout)

    async def __aenter__(self) -> "GeminiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self):
        """关闭HTTP客户端"""
        await self.client.aclose()

    def _ensure_api_key(self) -> str:
        """每次请求都重新读取，自定义密钥修改后立即生效"""
        api_key = self.credentials.get_api_key()
        if not api_key:
            raise ConfigurationError("无法获取 API 密钥，请检查 GEMINI_API_KEY 配置或设置自定义密钥")
        return api_key

    async def generate_image(
        self,
        prompt: str,
        reference_images: Iterable[str] = (),
        max_retries: int | None = None,
        model: str | None = None,
    ) -> GenerationResult:
        """根据提示词和参考图片生成一张图片

        Args:
            prompt: 图片生成提示词
            reference_images: 参考图片引用（data URL、blob URL 或 http 地址）
            max_retries: 最大尝试次数，默认取配置
            model: 模型名称

        Returns:
            成功时 artifact_url 为生成图片的引用
        """
        model = model or DEFAULT_IMAGE_MODEL
        references = list(reference_images)
        logger.info("生成图片: 模型 %s, 提示词 %d 字, 参考图片 %d 张", model, len(prompt), len(references))

        async def build_body() -> dict:
            parts: list[dict] = [{"text": prompt}]
            parts.extend(await self._reference_parts(references))
            return {"contents": [{"parts": parts}], "generationConfig": IMAGE_GENERATION_CONFIG}

        return await self._generate(model, prompt, build_body, self._extract_artifact, max_retries)

    async def generate_text(
        self,
        prompt: str,
        max_retries: int | None = None,
        model: str | None = None,
    ) -> GenerationResult:
        """生成文本（故事 JSON、测验等）"""
        model = model or DEFAULT_TEXT_MODEL
        logger.info("生成文本: 模型 %s, 提示词 %d 字", model, len(prompt))

        async def build_body() -> dict:
            return {"contents": [{"parts": [{"text": prompt}]}]}

        return await self._generate(model, prompt, build_body, self._extract_text, max_retries)

    async def generate_audio(
        self,
        text: str,
        voice: str,
        max_retries: int | None = None,
        model: str | None = None,
    ) -> GenerationResult:
        """文本转语音，返回 WAV 音频引用"""
        model = model or DEFAULT_TTS_MODEL
        logger.info("生成语音: 模型 %s, 声音 %s, 文本 %d 字", model, voice, len(text))

        async def build_body() -> dict:
            return {
                "contents": [{"parts": [{"text": text}]}],
                "generationConfig": {
                    "responseModalities": ["AUDIO"],
                    "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}}},
                },
            }

        return await self._generate(model, text, build_body, self._extract_audio, max_retries)

    async def _generate(
        self,
        model: str,
        prompt: str,
        build_body: Callable[[], Awaitable[dict]],
        extract: Callable[[dict], GenerationResult],
        max_retries: int | None,
    ) -> GenerationResult:
        if max_retries is None:
            max_retries = self.settings.max_retries
        # 至少请求一次
        max_retries = max(1, max_retries)

        try:
            api_key = self._ensure_api_key()
        except ConfigurationError as e:
            logger.error("%s", e)
            return GenerationResult(success=False, error=str(e), attempts=0, prompt=prompt)

        body = await build_body()
        attempts = 0

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_retries),
                wait=wait_exponential(multiplier=1, exp_base=2),
                retry=retry_if_exception(self.is_retryable),
                sleep=self.sleep,
                before_sleep=self._log_retry,
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    logger.debug("生成尝试 %d/%d", attempts, max_retries)
                    data = await self._post(model, api_key, body)
                    result = extract(data)
        except Exception as e:
            logger.error("生成失败 (%d/%d 次尝试): %s", attempts, max_retries, e)
            return GenerationResult(
                success=False,
                error=f"生成失败 ({attempts} 次尝试): {e}",
                attempts=attempts,
                prompt=prompt,
            )

        logger.info("生成成功 (第 %d 次尝试)", attempts)
        return result.model_copy(update={"attempts": attempts, "prompt": prompt})

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning("第 %d 次尝试失败: %s，%.0f 秒后重试", retry_state.attempt_number, error, wait)

    async def _reference_parts(self, references: list[str]) -> list[dict]:
        """把参考图片转换为 inlineData 片段，加载失败的图片会被跳过"""
        parts = []
        for url in references:
            try:
                encoded = await url_to_base64(
                    url,
                    client=self.client,
                    registry=self.registry,
                    max_width=self.settings.reference_max_width,
                    quality=self.settings.reference_jpeg_quality,
                )
            except MediaError as e:
                logger.warning("参考图片加载失败，已跳过: %s", e)
                continue
            parts.append({"inlineData": {"mimeType": "image/jpeg", "data": encoded}})
        return parts

    async def _post(self, model: str, api_key: str, body: dict) -> dict:
        response = await self.client.post(
            self.settings.generate_url(model),
            json=body,
            headers={"Content-Type": "application/json", "x-goog-api-key": api_key},
        )

        if response.is_success:
            return response.json()

        status = response.status_code
        detail = response.text[:200]
        key_info = "自定义密钥" if self.credentials.is_custom() else "默认密钥"

        if status >= 500:
            raise TransientServerError(status, f"HTTP {status}: {detail}")
        if status == 429:
            raise ApiStatusError(
                status,
                f"API 配额已用完 (HTTP 429，当前使用{key_info})。"
                "请在设置中填写自己的 API 密钥，或等 UTC 零点配额重置后再试",
            )
        if status in (400, 403):
            raise ApiStatusError(status, f"API 密钥错误 (HTTP {status}，当前使用{key_info}): {detail}")
        raise ApiStatusError(status, f"HTTP {status}: {detail}")

    @staticmethod
    def _find_inline_data(data: dict) -> tuple[str, str]:
        candidates = data.get("candidates") or []
        if candidates:
            parts = (candidates[0].get("content") or {}).get("parts") or []
            for part in parts:
                inline = part.get("inlineData") or part.get("inline_data")
                if inline and inline.get("data"):
                    mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                    return inline["data"], mime_type
        raise ResponseShapeError("响应中没有找到图片或音频数据")

    def _wrap_artifact(self, data: bytes, mime_type: str) -> str:
        if self.settings.artifact_format == ArtifactFormat.DATA:
            return to_data_url(data, mime_type)
        return self.registry.create(data, mime_type)

    def _extract_artifact(self, data: dict) -> GenerationResult:
        encoded, mime_type = self._find_inline_data(data)
        try:
            raw = base64.b64decode(encoded)
        except ValueError as e:
            raise ResponseShapeError(f"响应中的 Base64 数据无效: {e}") from e
        return GenerationResult(success=True, artifact_url=self._wrap_artifact(raw, mime_type), mime_type=mime_type)

    def _extract_audio(self, data: dict) -> GenerationResult:
        encoded, mime_type = self._find_inline_data(data)
        try:
            raw = base64.b64decode(encoded)
        except ValueError as e:
            raise ResponseShapeError(f"响应中的 Base64 数据无效: {e}") from e

        if mime_type.lower().startswith(("audio/l16", "audio/pcm")):
            raw = pcm_to_wav(raw, sample_rate=parse_pcm_rate(mime_type))
            mime_type = "audio/wav"
        return GenerationResult(success=True, artifact_url=self._wrap_artifact(raw, mime_type), mime_type=mime_type)

    @staticmethod
    def _extract_text(data: dict) -> GenerationResult:
        candidates = data.get("candidates") or []
        parts = []
        if candidates:
            parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        if not text.strip():
            raise ResponseShapeError("响应中没有文本内容")
        return GenerationResult(success=True, text=text)

