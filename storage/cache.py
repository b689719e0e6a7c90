"""
Relevance cache.

Maps a page URL to its last classification so revisiting a page does not
cost another embedding/judge round trip. Entries live for CACHE_TTL_MS and
the whole cache stays under CACHE_MAX_BYTES, evicting the oldest entries
first. The cache is advisory: every failure is logged and absorbed.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

import config
from relevance.result import ClassificationResult, SOURCE_CACHE
from storage.kv_store import KeyValueStore, StorageQuotaError, serialized_size

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def _item_size(url: str, entry: Dict[str, Any]) -> int:
    """Serialized size of one `"url":{...},` item inside the cache object."""
    return serialized_size(url) + serialized_size(entry) + 2


class RelevanceCache:
    """
    URL-keyed store of past classifications.

    Entry layout (one per URL): {"score", "status", "reason", "timestamp"}.
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl_ms: Optional[int] = None,
        max_bytes: Optional[int] = None,
        eviction_target: Optional[float] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.store = store
        self.ttl_ms = config.CACHE_TTL_MS if ttl_ms is None else ttl_ms
        self.max_bytes = config.CACHE_MAX_BYTES if max_bytes is None else max_bytes
        self.eviction_target = (
            config.CACHE_EVICTION_TARGET if eviction_target is None else eviction_target
        )
        self.clock = clock or now_ms

    async def get(self, url: str) -> Optional[ClassificationResult]:
        """
        Get the cached judgment for a URL.

        Returns:
            The cached result, or None if never stored or older than the TTL.
            Expired entries are removed on the way out.
        """
        try:
            cache = await self._load()
            entry = cache.get(url)
            if not entry:
                return None

            if self._is_expired(entry):
                del cache[url]
                await self.store.set({config.CACHE_KEY: cache})
                logger.debug(f"Cache entry expired for: {url}")
                return None

            return ClassificationResult(
                score=entry["score"],
                status=entry["status"],
                reason=entry.get("reason", ""),
                requires_grace_period=False,
                source=SOURCE_CACHE,
                from_cache=True,
            )
        except (KeyError, TypeError, ValueError, StorageQuotaError, OSError) as e:
            logger.error(f"Error getting cache for {url}: {e}")
            return None

    async def put(self, url: str, result: ClassificationResult) -> bool:
        """
        Store a judgment for a URL.

        The grace-period flag is dropped. On a quota failure, expired
        entries are swept and the write is retried once; a second
        failure drops the entry.

        Returns:
            True if the entry was written.
        """
        entry = {
            "score": result.score,
            "status": result.status,
            "reason": result.reason or "",
            "timestamp": self.clock(),
        }

        try:
            cache = await self._load()
            cache.pop(url, None)
            if not await self._ensure_capacity(cache, url, entry):
                return False
            cache[url] = entry
            await self.store.set({config.CACHE_KEY: cache})
            logger.debug(f"Cache updated for: {url}")
            return True
        except StorageQuotaError as e:
            logger.warning(f"Storage full while caching {url}: {e}. Sweeping expired entries.")
        except OSError as e:
            logger.error(f"Error setting cache for {url}: {e}")
            return False

        await self.clear_expired()
        try:
            cache = await self._load()
            cache[url] = entry
            await self.store.set({config.CACHE_KEY: cache})
            return True
        except (StorageQuotaError, OSError) as retry_error:
            logger.error(f"Failed to set cache after cleanup: {retry_error}")
            return False

    async def clear(self) -> None:
        """Drop every cached judgment."""
        await self.store.set({config.CACHE_KEY: {}})
        logger.info("Relevance cache cleared")

    async def clear_expired(self) -> int:
        """
        Remove entries older than the TTL.

        Returns:
            Number of entries removed.
        """
        try:
            cache = await self._load()
            expired = [url for url, entry in cache.items() if self._is_expired(entry)]
            for url in expired:
                del cache[url]
            if expired:
                await self.store.set({config.CACHE_KEY: cache})
                logger.info(f"Cleared {len(expired)} expired cache entries")
            return len(expired)
        except (StorageQuotaError, OSError) as e:
            logger.error(f"Error clearing old cache: {e}")
            return 0

    async def stats(self) -> Dict[str, int]:
        cache = await self._load()
        valid = sum(1 for entry in cache.values() if not self._is_expired(entry))
        return {
            "total_entries": len(cache),
            "valid_entries": valid,
            "expired_entries": len(cache) - valid,
        }

    async def _load(self) -> Dict[str, Dict[str, Any]]:
        result = await self.store.get([config.CACHE_KEY])
        cache = result.get(config.CACHE_KEY) or {}
        if not isinstance(cache, dict):
            logger.warning("Cache payload is not an object, resetting")
            return {}
        return cache

    def _is_expired(self, entry: Dict[str, Any]) -> bool:
        timestamp = entry.get("timestamp", 0) if isinstance(entry, dict) else 0
        return self.clock() - timestamp > self.ttl_ms

    async def _ensure_capacity(self, cache: Dict[str, Dict[str, Any]], url: str, entry: Dict[str, Any]) -> bool:
        """
        Evict oldest entries when adding `entry` would exceed the byte budget.

        Mutates `cache` in place. Returns False if the entry alone cannot
        fit in the budget.
        """
        new_item_size = _item_size(url, entry)
        usage = await self.store.bytes_in_use([config.CACHE_KEY])
        if usage + new_item_size <= self.max_bytes:
            return True

        # Exact size of the cache object once the entry is added
        total = 2 + sum(_item_size(u, e) for u, e in cache.items()) + new_item_size
        target = self.max_bytes * self.eviction_target

        oldest_first = sorted(cache.items(), key=lambda item: item[1].get("timestamp", 0))
        removed = 0
        for old_url, old_entry in oldest_first:
            if total <= target:
                break
            total -= _item_size(old_url, old_entry)
            del cache[old_url]
            removed += 1

        logger.info(f"Removed {removed} old cache entries to free space")

        if total > self.max_bytes:
            logger.warning(f"Cache entry for {url} is larger than the cache budget, not caching")
            return False
        return True
