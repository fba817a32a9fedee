"""API 密钥提供者测试"""

import pytest

from storybook_studio.services.credentials import CUSTOM_KEY_STORAGE_KEY, CredentialProvider
from storybook_studio.storage import MemoryStorage
from storybook_studio.utils.config import Settings


class TestCredentialProvider:
    def test_default_key(self, settings):
        provider = CredentialProvider(settings, MemoryStorage())

        assert provider.get_api_key() == "test-key"
        assert not provider.is_custom()

    def test_custom_key_takes_precedence(self, settings):
        storage = MemoryStorage()
        storage.set_item(CUSTOM_KEY_STORAGE_KEY, "custom-key")
        provider = CredentialProvider(settings, storage)

        assert provider.get_api_key() == "custom-key"
        assert provider.is_custom()

    def test_set_and_clear_custom_key(self, settings):
        provider = CredentialProvider(settings, MemoryStorage())

        provider.set_custom_key("  mine  ")
        assert provider.get_api_key() == "mine"

        provider.set_custom_key("")
        assert provider.get_api_key() == "test-key"

    def test_no_key(self):
        provider = CredentialProvider(Settings(gemini_api_key="  ", _env_file=None))

        assert provider.get_api_key() is None

    def test_set_without_storage(self, settings):
        with pytest.raises(ValueError):
            CredentialProvider(settings).set_custom_key("mine")
