"""工具模块 - 配置与日志"""

from .config import GenerationPreferences, Settings, get_settings
from .log import setup_logging

__all__ = ["GenerationPreferences", "Settings", "get_settings", "setup_logging"]
