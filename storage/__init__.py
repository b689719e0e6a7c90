"""
Persistence package for RealFocus.

Contains the key-value store implementations and the relevance cache.
"""

from storage.kv_store import KeyValueStore, JsonFileStore, MemoryStore, StorageQuotaError
from storage.cache import RelevanceCache

__all__ = [
    "KeyValueStore",
    "JsonFileStore",
    "MemoryStore",
    "StorageQuotaError",
    "RelevanceCache",
]
