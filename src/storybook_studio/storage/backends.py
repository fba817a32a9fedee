"""键值存储后端 - 模拟浏览器 localStorage 的字符串键值语义和容量配额"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

from ..exceptions import PersistenceError, StorageQuotaError

logger = logging.getLogger(__name__)

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024


class KeyValueStorage(Protocol):
    """字符串键值存储接口"""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def clear(self) -> None: ...


def _usage(items: dict[str, str]) -> int:
    return sum(len(k.encode("utf-8")) + len(v.encode("utf-8")) for k, v in items.items())


class MemoryStorage:
    """内存存储，主要用于测试"""

    def __init__(self, quota_bytes: int = DEFAULT_QUOTA_BYTES):
        self.quota_bytes = quota_bytes
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        candidate = {**self._items, key: value}
        used = _usage(candidate)
        if used > self.quota_bytes:
            raise StorageQuotaError(f"存储空间不足: 需要 {used} 字节，配额 {self.quota_bytes} 字节")
        self._items = candidate

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()


class FileStorage:
    """基于单个 JSON 文件的存储

    整个文件是一个 {key: 字符串值} 对象，每次写入都会整体重写。
    """

    def __init__(self, path: str | Path, quota_bytes: int = DEFAULT_QUOTA_BYTES):
        self.path = Path(path)
        self.quota_bytes = quota_bytes

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise PersistenceError(f"存储文件已损坏: {self.path} ({e})") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"存储文件格式错误: {self.path}")
        return data

    def _write(self, items: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(items, ensure_ascii=False), encoding="utf-8")

    def get_item(self, key: str) -> str | None:
        return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        items = self._read()
        items[key] = value
        used = _usage(items)
        if used > self.quota_bytes:
            raise StorageQuotaError(f"存储空间不足: 需要 {used} 字节，配额 {self.quota_bytes} 字节")
        self._write(items)

    def remove_item(self, key: str) -> None:
        items = self._read()
        if key in items:
            del items[key]
            self._write(items)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
