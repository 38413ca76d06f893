"""
Synchronous string key/value stores backing the local point cache.

The cache only needs get/set/remove/keys; capacity limits surface as
QuotaExceededError so the cache can reclaim space.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote, unquote


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the local key/value store cannot complete an operation."""


class QuotaExceededError(StorageError):
    """Raised when a write would exceed the store's capacity."""


class KeyValueStore(Protocol):
    """String-keyed, string-valued local store."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...

    def keys(self) -> list[str]:
        ...


class MemoryKeyValueStore:
    """
    In-process store with an optional size quota.

    Size is counted as UTF-8 bytes of keys plus values.
    """

    def __init__(self, max_bytes: Optional[int] = None):
        self._max_bytes = max_bytes
        self._data: dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self._max_bytes is not None:
            current = self.size_bytes() - self._entry_size(key, self._data.get(key))
            if current + self._entry_size(key, value) > self._max_bytes:
                raise QuotaExceededError(
                    f"Writing {key!r} would exceed quota of {self._max_bytes} bytes"
                )
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data.keys())

    def size_bytes(self) -> int:
        return sum(self._entry_size(k, v) for k, v in self._data.items())

    @staticmethod
    def _entry_size(key: str, value: Optional[str]) -> int:
        if value is None:
            return 0
        return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class DirectoryKeyValueStore:
    """
    File-backed store: one file per key inside a folder.

    Keys are percent-encoded into file names so any key round-trips.
    Writes go through a temp file and an atomic replace.
    """

    SUFFIX = ".json"

    def __init__(self, folder: Path):
        self._folder = Path(folder)
        self._folder.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Key/value store folder: {self._folder}")

    @property
    def folder(self) -> Path:
        return self._folder

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {key!r}: {e}") from e

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            tmp_path.write_text(value, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {key!r}: {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to remove {key!r}: {e}") from e

    def keys(self) -> list[str]:
        return [
            unquote(path.name[:-len(self.SUFFIX)])
            for path in self._folder.glob(f"*{self.SUFFIX}")
            if path.is_file()
        ]

    def _path(self, key: str) -> Path:
        return self._folder / f"{quote(key, safe='')}{self.SUFFIX}"
