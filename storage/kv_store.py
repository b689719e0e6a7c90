"""
Persistent key-value storage for RealFocus.

Two implementations share one async interface:

- JsonFileStore: a single JSON file written atomically (temp file + rename).
- MemoryStore: in-process dictionary, used for tests and ephemeral hosts.

Both enforce a byte quota on the serialized contents and raise
StorageQuotaError instead of writing past it. A write either lands
completely or not at all.
"""

import asyncio
import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import config

logger = logging.getLogger(__name__)


class StorageQuotaError(Exception):
    """Raised when a write would push the store past its byte quota."""


def serialized_size(value: Any) -> int:
    """Approximate stored size of a JSON value in bytes."""
    return len(json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8"))


class KeyValueStore:
    """
    Base class for the persistent store.

    Semantics:
        get(keys)          -> {key: value} for keys that exist
        set(mapping)       -> writes every pair in one atomic step;
                              a None value removes the key
        remove(keys)       -> deletes keys (missing keys are ignored)
        bytes_in_use(keys) -> approximate serialized size of those keys
                              (all keys when None)
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = config.STORAGE_QUOTA_BYTES if quota_bytes is None else quota_bytes
        self._data: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        async with self._lock:
            await self._ensure_loaded()
            return {
                key: copy.deepcopy(self._data[key])
                for key in keys if key in self._data
            }

    async def set(self, mapping: Dict[str, Any]) -> None:
        # Runs to completion even if the caller is cancelled, so the
        # in-memory copy always matches what was persisted.
        await asyncio.shield(self._apply(mapping))

    async def _apply(self, mapping: Dict[str, Any]) -> None:
        async with self._lock:
            await self._ensure_loaded()
            updated = dict(self._data)
            for key, value in mapping.items():
                if value is None:
                    updated.pop(key, None)
                else:
                    updated[key] = copy.deepcopy(value)

            size = serialized_size(updated)
            if size > self.quota_bytes:
                raise StorageQuotaError(
                    f"QUOTA_BYTES exceeded: write needs {size} bytes, quota is {self.quota_bytes}"
                )

            await self._persist(updated)
            self._data = updated

    async def remove(self, keys: Iterable[str]) -> None:
        await self.set({key: None for key in keys})

    async def bytes_in_use(self, keys: Optional[Iterable[str]] = None) -> int:
        async with self._lock:
            await self._ensure_loaded()
            if keys is None:
                return serialized_size(self._data)
            return sum(
                serialized_size(self._data[key]) + serialized_size(key)
                for key in keys if key in self._data
            )

    async def keys(self) -> List[str]:
        async with self._lock:
            await self._ensure_loaded()
            return list(self._data.keys())

    async def _ensure_loaded(self) -> None:
        """Hook for lazy loading. Called with the lock held."""

    async def _persist(self, data: Dict[str, Any]) -> None:
        """Hook for durable writes. Called with the lock held."""


class MemoryStore(KeyValueStore):
    """Key-value store that lives only in memory."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        if initial:
            self._data = copy.deepcopy(initial)


class JsonFileStore(KeyValueStore):
    """
    Key-value store backed by one JSON file.

    The file is read once on first access. Every write replaces the
    whole file atomically so a crash mid-write never leaves a torn file.
    """

    def __init__(self, path: Optional[Path] = None, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self.path = Path(path) if path is not None else config.STORAGE_FILE
        self._loaded = False

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._data = await asyncio.to_thread(self._read_file)
        self._loaded = True

    def _read_file(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError, OSError) as e:
            logger.warning(f"Failed to load storage file {self.path}: {e}. Starting empty.")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Storage file {self.path} does not hold an object. Starting empty.")
            return {}
        logger.debug(f"Loaded {len(data)} keys from {self.path}")
        return data

    async def _persist(self, data: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._write_file, data)

    def _write_file(self, data: Dict[str, Any]) -> None:
        """Write to a temp file in the same directory, then rename over the target."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        temp_fd, temp_path = tempfile.mkstemp(
            suffix='.tmp',
            prefix='storage_',
            dir=self.path.parent
        )

        try:
            with os.fdopen(temp_fd, 'w', encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(temp_path, self.path)
        except Exception:
            # Clean up temp file on error
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
