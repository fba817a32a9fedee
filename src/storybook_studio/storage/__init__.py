"""存储模块 - 键值存储后端与绘本持久化"""

from .backends import DEFAULT_QUOTA_BYTES, FileStorage, KeyValueStorage, MemoryStorage
from .local_store import StorybookStore

__all__ = ["DEFAULT_QUOTA_BYTES", "FileStorage", "KeyValueStorage", "MemoryStorage", "StorybookStore"]
