"""Gemini 客户端测试"""

import base64
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from storybook_studio.exceptions import ApiStatusError, ResponseShapeError, TransientServerError
from storybook_studio.services.credentials import CredentialProvider
from storybook_studio.services.gemini_client import GeminiClient, is_retryable
from storybook_studio.services.media import BlobRegistry, to_data_url
from storybook_studio.storage import MemoryStorage
from storybook_studio.utils.config import ArtifactFormat, Settings


URL = "https://generativelanguage.googleapis.com/v1beta/models/test:generateContent"


def _response(status: int, json: dict | None = None, text: str = "") -> httpx.Response:
    """构造模拟的 generateContent 响应"""
    request = httpx.Request("POST", URL)
    if json is not None:
        return httpx.Response(status, json=json, request=request)
    return httpx.Response(status, text=text, request=request)


def _inline_response(data: bytes = b"fake-png", mime_type: str = "image/png", key: str = "inlineData") -> httpx.Response:
    mime_key = "mimeType" if key == "inlineData" else "mime_type"
    return _response(
        200,
        json={
            "candidates": [
                {
                    "content": {
                        "parts": [
                            {"text": "Here is your image"},
                            {key: {mime_key: mime_type, "data": base64.b64encode(data).decode()}},
                        ]
                    }
                }
            ]
        },
    )


class TestIsRetryable:
    def test_server_error_is_retryable(self):
        assert is_retryable(TransientServerError(503, "unavailable"))

    def test_status_error_is_not_retryable(self):
        assert not is_retryable(ApiStatusError(400, "bad request"))
        assert not is_retryable(ResponseShapeError("no image"))

    def test_unknown_exception_is_retryable(self):
        assert is_retryable(httpx.ConnectError("boom"))
        assert is_retryable(RuntimeError("boom"))


class TestGeminiClient:
    @pytest.fixture
    def sleep(self):
        return AsyncMock()

    @pytest.fixture
    def registry(self):
        return BlobRegistry()

    @pytest.fixture
    def client(self, settings, sleep, registry):
        return GeminiClient(settings, registry=registry, sleep=sleep)

    @pytest.mark.asyncio
    async def test_generate_image_success(self, client, registry):
        """成功时返回 blob URL，内容可从注册表取回"""
        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=_inline_response()) as post:
            result = await client.generate_image("a rabbit", model="test")

        assert result.success
        assert result.attempts == 1
        assert result.prompt == "a rabbit"
        assert result.artifact_url.startswith("blob:")
        assert registry.get(result.artifact_url) == (b"fake-png", "image/png")
        assert post.await_args.kwargs["headers"]["x-goog-api-key"] == "test-key"

    @pytest.mark.asyncio
    async def test_snake_case_inline_data(self, client):
        response = _inline_response(key="inline_data")
        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=response):
            result = await client.generate_image("a rabbit")

        assert result.success

    @pytest.mark.asyncio
    async def test_server_error_retries_until_exhausted(self, client, sleep):
        """5xx 重试 max_retries 次，等待 1、2 秒"""
        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=_response(503, text="busy")) as post:
            result = await client.generate_image("a rabbit", max_retries=3)

        assert not result.success
        assert result.attempts == 3
        assert post.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]
        assert "3 次尝试" in result.error
        assert "503" in result.error

    @pytest.mark.asyncio
    async def test_backoff_doubles_each_attempt(self, client, sleep):
        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=_response(500, text="err")) as post:
            result = await client.generate_image("a rabbit", max_retries=5)

        assert result.attempts == 5
        assert post.await_count == 5
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2, 4, 8]

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self, client, sleep):
        with patch.object(
            client.client, "post", new_callable=AsyncMock, side_effect=httpx.ConnectError("connection refused")
        ) as post:
            result = await client.generate_image("a rabbit")

        assert not result.success
        assert post.await_count == 3
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_retries", [0, 1])
    async def test_explicit_low_max_retries(self, client, sleep, max_retries):
        """显式传入的 0 或 1 不会被默认次数替换，至少请求一次"""
        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=_response(503, text="busy")) as post:
            result = await client.generate_image("a rabbit", max_retries=max_retries)

        assert result.attempts == 1
        assert post.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_custom_key_takes_effect_on_next_request(self, settings, sleep):
        credentials = CredentialProvider(settings, MemoryStorage())
        client = GeminiClient(settings, credentials=credentials, sleep=sleep)
        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=_inline_response()) as post:
            await client.generate_image("a rabbit")
            credentials.set_custom_key("custom-key")
            await client.generate_image("a rabbit")

        keys = [c.kwargs["headers"]["x-goog-api-key"] for c in post.await_args_list]
        assert keys == ["test-key", "custom-key"]

    @pytest.mark.asyncio
    async def test_recovers_after_server_error(self, client, sleep):
        responses = [_response(502, text="bad gateway"), _inline_response()]
        with patch.object(client.client, "post", new_callable=AsyncMock, side_effect=responses):
            result = await client.generate_image("a rabbit")

        assert result.success
        assert result.attempts == 2
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 403, 404, 429])
    async def test_client_error_fails_after_one_attempt(self, client, sleep, status):
        """非 5xx 的错误状态码不重试"""
        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=_response(status, text="no")) as post:
            result = await client.generate_image("a rabbit")

        assert not result.success
        assert result.attempts == 1
        assert post.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_quota_error_message(self, client):
        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=_response(429, text="quota")):
            result = await client.generate_image("a rabbit")

        assert "配额" in result.error
        assert "默认密钥" in result.error

    @pytest.mark.asyncio
    async def test_missing_inline_data_is_not_retried(self, client, sleep):
        response = _response(200, json={"candidates": [{"content": {"parts": [{"text": "sorry"}]}}]})
        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=response) as post:
            result = await client.generate_image("a rabbit")

        assert not result.success
        assert result.attempts == 1
        assert post.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_custom_classifier(self, settings, sleep):
        client = GeminiClient(settings, is_retryable=lambda e: True, sleep=sleep)
        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=_response(400, text="no")) as post:
            result = await client.generate_image("a rabbit")

        assert result.attempts == 3
        assert post.await_count == 3

    @pytest.mark.asyncio
    async def test_missing_api_key_fails_without_request(self, sleep):
        client = GeminiClient(Settings(gemini_api_key="", _env_file=None), sleep=sleep)
        with patch.object(client.client, "post", new_callable=AsyncMock) as post:
            result = await client.generate_image("a rabbit")

        assert not result.success
        assert result.attempts == 0
        assert "API 密钥" in result.error
        post.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_data_url_artifact_format(self, sleep):
        settings = Settings(gemini_api_key="k", artifact_format=ArtifactFormat.DATA, _env_file=None)
        client = GeminiClient(settings, sleep=sleep)
        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=_inline_response(b"abc")):
            result = await client.generate_image("a rabbit")

        assert result.artifact_url == to_data_url(b"abc", "image/png")

    @pytest.mark.asyncio
    async def test_reference_images_are_sent_as_jpeg(self, client, registry, make_png):
        """参考图片统一转为 JPEG inlineData，无法加载的被跳过"""
        png_ref = to_data_url(make_png(), "image/png")
        blob_ref = registry.create(make_png(color="blue"), "image/png")
        references = [png_ref, blob_ref, "blob:storybook/missing"]

        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=_inline_response()) as post:
            result = await client.generate_image("a rabbit", references)

        assert result.success
        parts = post.await_args.kwargs["json"]["contents"][0]["parts"]
        assert parts[0] == {"text": "a rabbit"}
        assert len(parts) == 3
        for part in parts[1:]:
            assert part["inlineData"]["mimeType"] == "image/jpeg"
            assert base64.b64decode(part["inlineData"]["data"])[:2] == b"\xff\xd8"

    @pytest.mark.asyncio
    async def test_generate_text(self, client):
        response = _response(200, json={"candidates": [{"content": {"parts": [{"text": '{"title": "토끼"}'}]}}]})
        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=response) as post:
            result = await client.generate_text("write a story", model="gemini-2.5-flash")

        assert result.success
        assert result.text == '{"title": "토끼"}'
        assert post.await_args.args[0].endswith("/models/gemini-2.5-flash:generateContent")

    @pytest.mark.asyncio
    async def test_generate_audio_wraps_pcm_in_wav(self, client, registry):
        response = _inline_response(b"\x00\x01" * 100, mime_type="audio/L16;codec=pcm;rate=24000")
        with patch.object(client.client, "post", new_callable=AsyncMock, return_value=response) as post:
            result = await client.generate_audio("옛날 옛적에", "Kore")

        assert result.success
        assert result.mime_type == "audio/wav"
        data, mime_type = registry.get(result.artifact_url)
        assert data[:4] == b"RIFF"
        body = post.await_args.kwargs["json"]
        assert body["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]["voiceName"] == "Kore"
