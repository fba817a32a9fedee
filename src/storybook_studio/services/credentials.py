"""API 密钥提供者"""

from __future__ import annotations

import logging

from ..storage.backends import KeyValueStorage
from ..utils.config import Settings

logger = logging.getLogger(__name__)

CUSTOM_KEY_STORAGE_KEY = "gemini_api_key"


class CredentialProvider:
    """按需提供 Gemini API 密钥

    优先级: 存储中保存的自定义密钥 > 配置中的默认密钥
    """

    def __init__(self, settings: Settings, storage: KeyValueStorage | None = None):
        self.settings = settings
        self.storage = storage

    def get_api_key(self) -> str | None:
        """获取 API 密钥，都没有时返回 None"""
        custom = self.custom_key()
        if custom:
            logger.debug("使用自定义 API 密钥 (%s...)", custom[:10])
            return custom

        default = self.settings.gemini_api_key.strip()
        if default:
            logger.debug("使用默认 API 密钥 (%s...)", default[:10])
            return default

        return None

    def custom_key(self) -> str | None:
        if self.storage is None:
            return None
        value = self.storage.get_item(CUSTOM_KEY_STORAGE_KEY)
        return value.strip() if value and value.strip() else None

    def is_custom(self) -> bool:
        return self.custom_key() is not None

    def set_custom_key(self, api_key: str) -> None:
        """保存自定义密钥；传入空字符串则恢复默认密钥"""
        if self.storage is None:
            raise ValueError("未配置存储，无法保存自定义密钥")
        if api_key.strip():
            self.storage.set_item(CUSTOM_KEY_STORAGE_KEY, api_key.strip())
        else:
            self.storage.remove_item(CUSTOM_KEY_STORAGE_KEY)
