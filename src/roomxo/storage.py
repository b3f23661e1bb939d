"""Key-value storage port shared by accounts and rooms.

Every consumer does a full read, full mutation, full write of a key. There is
no locking and no version token: two writers racing on the same key end up
with whichever wrote last.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from .errors import StorageUnavailable

logger = logging.getLogger(__name__)


class Storage(Protocol):
    """String-valued key-value store, modelled on a browser's local storage."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage. Instances can be shared between stores."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """All keys live in one JSON object on disk.

    Each operation reloads the file, so separate processes pointed at the same
    path see each other's writes the next time they read.
    """

    def __init__(self, path: os.PathLike | str) -> None:
        self.path = Path(path)
        # Serializes writers inside this process only.
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageUnavailable(f"Cannot read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageUnavailable(f"{self.path} does not hold a JSON object")
        return data

    def _dump(self, data: Dict[str, str]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot write {self.path}: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._dump(data)


class UnavailableStorage:
    """Stand-in for an environment without persistent storage."""

    def get(self, key: str) -> Optional[str]:
        raise StorageUnavailable("No persistent storage available")

    def set(self, key: str, value: str) -> None:
        raise StorageUnavailable("No persistent storage available")

    def remove(self, key: str) -> None:
        raise StorageUnavailable("No persistent storage available")


def read_json(storage: Storage, key: str, default: Any = None) -> Any:
    """Decode the JSON value under ``key``; ``default`` on miss or failure."""

    try:
        raw = storage.get(key)
    except StorageUnavailable:
        logger.warning("Storage read of %r failed", key, exc_info=True)
        return default
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.error("Discarding corrupt value stored under %r", key)
        return default


def write_json(storage: Storage, key: str, value: Any) -> bool:
    """Encode and store ``value``. Returns False when the write was dropped."""

    try:
        storage.set(key, json.dumps(value, separators=(",", ":")))
    except StorageUnavailable:
        logger.error("Storage write of %r failed; change lost", key, exc_info=True)
        return False
    return True


def remove_key(storage: Storage, key: str) -> bool:
    try:
        storage.remove(key)
    except StorageUnavailable:
        logger.error("Storage removal of %r failed", key, exc_info=True)
        return False
    return True


def read_list(storage: Storage, key: str) -> list:
    value = read_json(storage, key, [])
    if not isinstance(value, list):
        logger.error("Expected a list under %r, found %s", key, type(value).__name__)
        return []
    return value
