"""
Focus statistics for RealFocus.

Tracks cumulative focused time and the number of blocked pages. Stored
under its own key so stopping a session never touches it. Both counters
only ever grow.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import config
from storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass
class Statistics:
    total_focused_time_ms: int = 0
    blocked_count: int = 0

    def add_focused_time(self, duration_ms: int) -> None:
        """
        Add focused time.

        Raises:
            ValueError: If duration is negative.
        """
        if duration_ms < 0:
            raise ValueError("Focused time must be non-negative")
        self.total_focused_time_ms += int(duration_ms)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_focused_time": self.total_focused_time_ms,
            "blocked_count": self.blocked_count,
        }

    def snapshot(self) -> Dict[str, int]:
        """Statistics snapshot sent to the UI layer."""
        return {
            "total_focused_time_ms": self.total_focused_time_ms,
            "blocked_count": self.blocked_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Statistics':
        return cls(
            total_focused_time_ms=max(0, int(data.get("total_focused_time", 0))),
            blocked_count=max(0, int(data.get("blocked_count", 0))),
        )


class StatisticsTracker:
    """
    Reads and updates the persisted Statistics.

    Every update goes through commit(), which writes statistics and any
    companion keys (the scheduler passes its session) in a single store
    write so the two can never disagree.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._lock = asyncio.Lock()

    async def get(self) -> Statistics:
        try:
            result = await self.store.get([config.STATISTICS_KEY])
        except OSError as e:
            logger.error(f"Error getting statistics: {e}")
            return Statistics()
        data = result.get(config.STATISTICS_KEY)
        if not isinstance(data, dict):
            return Statistics()
        return Statistics.from_dict(data)

    async def commit(
        self,
        focused_ms: int = 0,
        blocked: int = 0,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Statistics:
        """
        Add focused time and/or blocks, writing `extra` keys alongside.

        A None value in `extra` removes that key in the same write.

        Raises:
            ValueError: If either increment is negative.
        """
        if blocked < 0:
            raise ValueError("Blocked count increment must be non-negative")
        async with self._lock:
            stats = await self.get()
            stats.add_focused_time(focused_ms)
            stats.blocked_count += blocked
            mapping = {config.STATISTICS_KEY: stats.to_dict()}
            if extra:
                mapping.update(extra)
            await self.store.set(mapping)
            return stats

    async def record_block(self) -> Statistics:
        """Count one block event (immediate block or grace-period expiry)."""
        stats = await self.commit(blocked=1)
        logger.info(f"Blocked count is now {stats.blocked_count}")
        return stats
