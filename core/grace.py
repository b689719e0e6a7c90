"""
Grace-period controller.

When a page gets a grace period the user has GRACE_PERIOD_MS to look
around. One timer per tab; if the tab still shows the same URL when the
timer runs out the page is force-blocked and counted as a block.

Callbacks:
    on_grace_started(tab_id: int, url: str, duration_seconds: int, message: str)
    on_forced_block(tab_id: int, url: str, reason: str, score: int)
"""

import asyncio
import math
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

import config
from relevance.classifier import localized
from relevance.result import ClassificationResult
from storage.kv_store import StorageQuotaError
from tracking.statistics import StatisticsTracker

logger = logging.getLogger(__name__)

FORCED_BLOCK_SCORE = 15

UrlResolver = Callable[[int], Awaitable[Optional[str]]]


class GracePeriodController:
    """Per-tab grace timers that end in a forced block."""

    def __init__(
        self,
        statistics: StatisticsTracker,
        resolve_url: UrlResolver,
        grace_period_ms: Optional[int] = None,
    ):
        self.statistics = statistics
        self.resolve_url = resolve_url
        self.grace_period_ms = grace_period_ms if grace_period_ms is not None else config.GRACE_PERIOD_MS
        self._timers: Dict[int, asyncio.Task] = {}
        self._blocking: Set[asyncio.Task] = set()

        self.on_grace_started: Optional[Callable[[int, str, int, str], None]] = None
        self.on_forced_block: Optional[Callable[[int, str, str, int], None]] = None

    def start(self, tab_id: int, url: str, result: ClassificationResult, keywords: str = "") -> None:
        """Arm (or re-arm) the grace timer for `tab_id` showing `url`."""
        self.cancel(tab_id)
        task = asyncio.ensure_future(self._expire_after(tab_id, url, result, keywords))
        self._timers[tab_id] = task
        task.add_done_callback(lambda t, tid=tab_id: self._forget(tid, t))

        seconds = math.ceil(self.grace_period_ms / 1000)
        message = localized(
            keywords,
            f"You are searching on a distracting platform. You have {seconds} seconds before this page is blocked.",
            f"当前正在干扰平台进行搜索，你有 {seconds} 秒时间查看，之后将强制拦截",
        )
        logger.info(f"Grace period started for tab {tab_id}: {url}")
        self._notify_grace_started(tab_id, url, seconds, message)

    def cancel(self, tab_id: int) -> bool:
        task = self._timers.pop(tab_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug(f"Grace period cancelled for tab {tab_id}")
        return True

    def cancel_all(self) -> int:
        count = 0
        for tab_id in list(self._timers):
            if self.cancel(tab_id):
                count += 1
        return count

    def is_active(self, tab_id: int) -> bool:
        task = self._timers.get(tab_id)
        return task is not None and not task.done()

    @property
    def active_tabs(self):
        return [tab_id for tab_id in self._timers if self.is_active(tab_id)]

    async def shutdown(self) -> None:
        tasks = [t for t in self._timers.values() if not t.done()]
        self.cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._blocking:
            await asyncio.gather(*self._blocking, return_exceptions=True)

    async def _expire_after(self, tab_id: int, url: str, result: ClassificationResult, keywords: str) -> None:
        await asyncio.sleep(self.grace_period_ms / 1000.0)

        try:
            current_url = await self.resolve_url(tab_id)
        except Exception as e:
            logger.warning(f"Could not check current page of tab {tab_id}: {e}")
            return

        if current_url != url:
            logger.debug(f"Tab {tab_id} moved on before grace expired, no block")
            return

        # Past this point a cancel no longer stops the block: the signal and
        # the count always go out together.
        task = asyncio.ensure_future(self._force_block(tab_id, url, result, keywords))
        self._blocking.add(task)
        task.add_done_callback(self._blocking.discard)
        await asyncio.shield(task)

    async def _force_block(self, tab_id: int, url: str, result: ClassificationResult, keywords: str) -> None:
        logger.info(f"Grace period expired, forcing block for: {url}")
        reason = result.reason or localized(
            keywords,
            "Grace period is over, this page is now blocked",
            "30秒宽限期已结束，已强制拦截该页面",
        )
        self._notify_forced_block(tab_id, url, reason, result.score or FORCED_BLOCK_SCORE)
        try:
            await self.statistics.record_block()
        except (StorageQuotaError, OSError) as e:
            logger.error(f"Could not count forced block for {url}: {e}")

    def _forget(self, tab_id: int, task: asyncio.Task) -> None:
        if self._timers.get(tab_id) is task:
            del self._timers[tab_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Grace timer for tab {tab_id} failed: {task.exception()}")

    # ------------------------------------------------------------------
    # Callback helpers
    # ------------------------------------------------------------------

    def _notify_grace_started(self, tab_id: int, url: str, seconds: int, message: str) -> None:
        if self.on_grace_started:
            try:
                self.on_grace_started(tab_id, url, seconds, message)
            except Exception as e:
                logger.debug(f"on_grace_started callback error: {e}")

    def _notify_forced_block(self, tab_id: int, url: str, reason: str, score: int) -> None:
        if self.on_forced_block:
            try:
                self.on_forced_block(tab_id, url, reason, score)
            except Exception as e:
                logger.debug(f"on_forced_block callback error: {e}")
