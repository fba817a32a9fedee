"""媒体编解码工具 - 在 URL、Base64 与内存二进制之间转换图片和音频"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import uuid
import wave

import httpx
from PIL import Image, UnidentifiedImageError

from ..exceptions import MediaError

logger = logging.getLogger(__name__)

BLOB_PREFIX = "blob:storybook/"
MAX_UPLOAD_BYTES = 5 * 1024 * 1024

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "audio/wav": "wav",
    "audio/mpeg": "mp3",
}


class BlobRegistry:
    """内存中的 blob URL 注册表

    生成的图片和音频以 blob: URL 的形式被绘本引用。URL 在进程生命周期内
    一直有效，不做引用计数，也不会被回收。
    """

    def __init__(self):
        self._blobs: dict[str, tuple[bytes, str]] = {}

    def create(self, data: bytes, mime_type: str) -> str:
        url = f"{BLOB_PREFIX}{uuid.uuid4()}"
        self._blobs[url] = (data, mime_type)
        return url

    def get(self, url: str) -> tuple[bytes, str]:
        try:
            return self._blobs[url]
        except KeyError:
            raise MediaError(f"blob URL 已失效: {url}") from None

    def __contains__(self, url: str) -> bool:
        return url in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


blob_registry = BlobRegistry()


def is_data_url(url: str | None) -> bool:
    return bool(url) and url.startswith("data:")


def is_blob_url(url: str | None) -> bool:
    return bool(url) and url.startswith("blob:")


def parse_data_url(url: str) -> tuple[str, bytes]:
    """解析 data URL

    Args:
        url: 形如 data:image/png;base64,xxxx 的字符串

    Returns:
        (mime_type, 原始字节)
    """
    if not is_data_url(url) or "," not in url:
        raise MediaError(f"不是有效的 data URL: {url[:40]}")

    header, payload = url.split(",", 1)
    mime_type = header[5:].split(";")[0] or "application/octet-stream"
    try:
        if ";base64" in header:
            return mime_type, base64.b64decode(payload)
        return mime_type, payload.encode("utf-8")
    except binascii.Error as e:
        raise MediaError(f"data URL 的 Base64 内容无效: {e}") from e


def to_data_url(data: bytes, mime_type: str) -> str:
    """将字节编码为 data URL"""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def base64_to_blob_url(
    encoded: str, mime_type: str = "image/jpeg", registry: BlobRegistry | None = None
) -> str:
    """将 Base64 字符串解码并注册为 blob URL"""
    registry = registry or blob_registry
    try:
        data = base64.b64decode(encoded)
    except binascii.Error as e:
        raise MediaError(f"Base64 内容无效: {e}") from e
    return registry.create(data, mime_type)


async def resolve_artifact(
    url: str,
    client: httpx.AsyncClient | None = None,
    registry: BlobRegistry | None = None,
) -> tuple[bytes, str]:
    """获取任意形式引用的原始内容

    支持 data URL、blob URL 以及 http(s) 绝对地址。

    Returns:
        (原始字节, mime_type)
    """
    registry = registry or blob_registry

    if is_data_url(url):
        mime_type, data = parse_data_url(url)
        return data, mime_type

    if is_blob_url(url):
        return registry.get(url)

    if url.startswith(("http://", "https://")):
        if client is None:
            async with httpx.AsyncClient(timeout=60.0) as tmp_client:
                return await _download(tmp_client, url)
        return await _download(client, url)

    raise MediaError(f"不支持的引用格式: {url[:40]}")


async def _download(client: httpx.AsyncClient, url: str) -> tuple[bytes, str]:
    try:
        response = await client.get(url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise MediaError(f"下载失败: {url} ({e})") from e
    mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0]
    return response.content, mime_type


def compress_image(data: bytes, max_width: int = 1024, quality: int = 90) -> bytes:
    """将图片缩放到最大宽度并重新编码为 JPEG

    Args:
        data: 原始图片字节
        max_width: 最大宽度，超过时等比缩放
        quality: JPEG 质量 (1-95)

    Returns:
        JPEG 字节
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.width > max_width:
                height = round(img.height * (max_width / img.width))
                img = img.resize((max_width, height))
            if img.mode != "RGB":
                img = img.convert("RGB")
            buffer = io.BytesIO()
            img.save(buffer, format="JPEG", quality=quality)
            return buffer.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        raise MediaError(f"无法解析图片: {e}") from e


def register_upload(data: bytes, registry: BlobRegistry | None = None) -> str:
    """检查用户上传的图片并注册为 blob URL

    大小不能超过 5MB，内容必须是能导出的图片格式 (PNG、JPEG、WebP、GIF)；
    mime 类型按文件内容判断，不依赖扩展名。
    """
    if len(data) > MAX_UPLOAD_BYTES:
        raise MediaError(f"文件大小不能超过 {MAX_UPLOAD_BYTES // (1024 * 1024)}MB")
    try:
        with Image.open(io.BytesIO(data)) as img:
            mime_type = Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError) as e:
        raise MediaError("只能上传图片文件") from e
    if not mime_type or not mime_type.startswith("image/") or mime_type not in MIME_EXTENSIONS:
        raise MediaError(f"不支持的图片格式: {mime_type or '未知'}")
    return (registry or blob_registry).create(data, mime_type)


async def url_to_base64(
    url: str,
    client: httpx.AsyncClient | None = None,
    registry: BlobRegistry | None = None,
    max_width: int = 1024,
    quality: int = 90,
) -> str:
    """将参考图片转换为接口需要的 JPEG Base64（不含 data: 前缀）"""
    data, _ = await resolve_artifact(url, client=client, registry=registry)
    jpeg = compress_image(data, max_width=max_width, quality=quality)
    return base64.b64encode(jpeg).decode("ascii")


def parse_pcm_rate(mime_type: str, default: int = 24000) -> int:
    """从 audio/L16;codec=pcm;rate=24000 中取出采样率"""
    for param in mime_type.split(";")[1:]:
        key, _, value = param.strip().partition("=")
        if key == "rate" and value.isdigit():
            return int(value)
    return default


def pcm_to_wav(pcm: bytes, sample_rate: int = 24000, channels: int = 1, sample_width: int = 2) -> bytes:
    """为 16-bit PCM 数据加上 WAV 文件头"""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(sample_width)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


def extension_for(mime_type: str) -> str:
    """根据 mime 类型推断文件扩展名"""
    return MIME_EXTENSIONS.get(mime_type.split(";")[0], "bin")
