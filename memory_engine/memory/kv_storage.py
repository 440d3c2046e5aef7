"""Namespaced key-value persistence for the local memory fallback.

Architectural role:
    Durable `get_item`/`set_item` storage holding one serialized JSON blob per key.
    Writes that would exceed the configured quota, or that fail because the disk is
    full, raise `StorageQuotaExceededError` so the caller can run emergency pruning.

Implementations:
    - `JsonFileStorage`: one file per key in a directory; writes go to `<file>.tmp`
      and are atomically swapped in with `os.replace`.
    - `InMemoryStorage`: process-local dict with the same quota semantics, used
      when no storage directory is configured.
"""

from __future__ import annotations

import errno
import logging
import os
import re
import threading
from typing import Protocol

from memory_engine.memory.errors import StorageQuotaExceededError


logger = logging.getLogger(__name__)

QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


def _check_quota(quota_bytes: int, key: str, used_by_others: int, value: str) -> None:
    if quota_bytes <= 0:
        return
    needed = used_by_others + len(value.encode("utf-8"))
    if needed > quota_bytes:
        raise StorageQuotaExceededError(
            f"Writing {key!r} needs {needed} bytes, quota is {quota_bytes}"
        )


class InMemoryStorage:
    """Dict-backed storage with a byte quota."""

    def __init__(self, quota_bytes: int = 0):
        self.quota_bytes = quota_bytes
        self._items: dict[str, str] = {}
        self._lock = threading.Lock()

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            others = sum(
                len(v.encode("utf-8")) for k, v in self._items.items() if k != key
            )
            _check_quota(self.quota_bytes, key, others, value)
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)


class JsonFileStorage:
    """File-per-key storage under `directory` with a byte quota."""

    def __init__(self, directory: str, quota_bytes: int = 0):
        self.directory = directory
        self.quota_bytes = quota_bytes
        self._lock = threading.Lock()
        os.makedirs(self.directory, exist_ok=True)

    def _path(self, key: str) -> str:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return os.path.join(self.directory, f"{safe}.json")

    def _used_by_others(self, key: str) -> int:
        own = os.path.abspath(self._path(key))
        total = 0
        for name in os.listdir(self.directory):
            path = os.path.join(self.directory, name)
            if not name.endswith(".json") or os.path.abspath(path) == own:
                continue
            try:
                total += os.path.getsize(path)
            except OSError:
                continue
        return total

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def set_item(self, key: str, value: str) -> None:
        """Atomically replace the value stored under `key`.

        Raises:
            StorageQuotaExceededError: If the quota would be exceeded or the OS
                reports no space left / quota exceeded.
            OSError: For any other filesystem failure.
        """
        with self._lock:
            _check_quota(self.quota_bytes, key, self._used_by_others(key), value)

            path = self._path(key)
            tmp = path + ".tmp"
            try:
                with open(tmp, "w", encoding="utf-8") as f:
                    f.write(value)
                os.replace(tmp, path)
            except OSError as exc:
                if os.path.exists(tmp):
                    os.remove(tmp)
                if exc.errno in QUOTA_ERRNOS:
                    raise StorageQuotaExceededError(str(exc)) from exc
                raise

    def remove_item(self, key: str) -> None:
        path = self._path(key)
        if os.path.exists(path):
            os.remove(path)


def create_storage(config) -> KeyValueStorage:
    """Return file storage for `config.storage_dir`, or in-process storage."""
    if config.storage_dir:
        return JsonFileStorage(config.storage_dir, quota_bytes=config.storage_quota_bytes)
    logger.info("No storage directory configured, memories are kept in-process only")
    return InMemoryStorage(quota_bytes=config.storage_quota_bytes)
