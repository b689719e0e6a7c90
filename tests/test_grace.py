"""
Tests for core/grace.py: per-tab grace timers, forced blocks and
cancellation on navigation.
"""

import sys
import json
import time
import asyncio
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.content import TabRegistry
from core.grace import GracePeriodController
from relevance.result import ClassificationResult, STATUS_STAY
from storage.kv_store import JsonFileStore, MemoryStore, StorageQuotaError
from tracking.statistics import StatisticsTracker

URL = "https://weibo.com/search?q=vercel"
GRACE_MS = 20


def _grace_result(reason="Work-related search on a distracting platform."):
    return ClassificationResult(score=50, status=STATUS_STAY, reason=reason, requires_grace_period=True)


class GraceTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.statistics = StatisticsTracker(MemoryStore())
        self.tabs = TabRegistry()
        self.tabs.update(1, URL)
        self.grace = GracePeriodController(self.statistics, self.tabs.get_url, grace_period_ms=GRACE_MS)
        self.grace.on_forced_block = MagicMock()
        self.grace.on_grace_started = MagicMock()

    async def asyncTearDown(self):
        await self.grace.shutdown()

    async def wait_past_grace(self):
        await asyncio.sleep(GRACE_MS / 1000.0 * 5)


class TestForcedBlock(GraceTestCase):
    """Test expiry while the user stays on the page."""

    async def test_expiry_on_same_page_forces_block(self):
        self.grace.start(1, URL, _grace_result(), "vercel billing")
        await self.wait_past_grace()
        self.grace.on_forced_block.assert_called_once_with(
            1, URL, "Work-related search on a distracting platform.", 50
        )
        self.assertEqual((await self.statistics.get()).blocked_count, 1)
        self.assertFalse(self.grace.is_active(1))

    async def test_grace_started_signal(self):
        self.grace.start(1, URL, _grace_result(), "vercel billing")
        tab_id, url, seconds, message = self.grace.on_grace_started.call_args.args
        self.assertEqual((tab_id, url, seconds), (1, URL, 1))
        self.assertTrue(message.isascii())

    async def test_grace_message_follows_keyword_language(self):
        self.grace.start(1, URL, _grace_result(), "vercel 部署")
        message = self.grace.on_grace_started.call_args.args[3]
        self.assertIn("强制拦截", message)

    async def test_default_reason_when_result_has_none(self):
        self.grace.start(1, URL, _grace_result(reason=""), "vercel billing")
        await self.wait_past_grace()
        reason = self.grace.on_forced_block.call_args.args[2]
        self.assertIn("blocked", reason)

    async def test_restart_replaces_previous_timer(self):
        self.grace.start(1, URL, _grace_result(), "vercel billing")
        self.grace.start(1, URL, _grace_result(), "vercel billing")
        await self.wait_past_grace()
        self.grace.on_forced_block.assert_called_once()
        self.assertEqual((await self.statistics.get()).blocked_count, 1)

    async def test_callback_error_does_not_break_timer(self):
        self.grace.on_forced_block.side_effect = RuntimeError("tab gone")
        self.grace.start(1, URL, _grace_result(), "vercel billing")
        await self.wait_past_grace()
        self.assertEqual((await self.statistics.get()).blocked_count, 1)

    async def test_failed_count_still_blocks(self):
        self.statistics.record_block = AsyncMock(side_effect=StorageQuotaError("full"))
        self.grace.start(1, URL, _grace_result(), "vercel billing")
        await self.wait_past_grace()
        self.grace.on_forced_block.assert_called_once()


class TestCancellation(GraceTestCase):
    """Test that leaving the page never leads to a block."""

    async def test_cancel_before_expiry_prevents_block(self):
        self.grace.start(1, URL, _grace_result(), "vercel billing")
        self.tabs.update(1, "https://vercel.com/docs")
        self.assertTrue(self.grace.cancel(1))
        await self.wait_past_grace()
        self.grace.on_forced_block.assert_not_called()
        self.assertEqual((await self.statistics.get()).blocked_count, 0)

    async def test_moved_page_without_cancel_is_not_blocked(self):
        self.grace.start(1, URL, _grace_result(), "vercel billing")
        self.tabs.update(1, "https://vercel.com/docs")
        await self.wait_past_grace()
        self.grace.on_forced_block.assert_not_called()

    async def test_closed_tab_is_not_blocked(self):
        self.grace.start(1, URL, _grace_result(), "vercel billing")
        self.tabs.remove(1)
        await self.wait_past_grace()
        self.grace.on_forced_block.assert_not_called()

    async def test_resolver_failure_is_not_blocked(self):
        grace = GracePeriodController(
            self.statistics, AsyncMock(side_effect=RuntimeError("no tab")), grace_period_ms=GRACE_MS
        )
        grace.on_forced_block = MagicMock()
        grace.start(1, URL, _grace_result(), "vercel billing")
        await self.wait_past_grace()
        grace.on_forced_block.assert_not_called()
        await grace.shutdown()

    async def test_timers_are_per_tab(self):
        self.tabs.update(2, URL)
        self.grace.start(1, URL, _grace_result(), "vercel billing")
        self.grace.start(2, URL, _grace_result(), "vercel billing")
        self.grace.cancel(1)
        await self.wait_past_grace()
        self.grace.on_forced_block.assert_called_once()
        self.assertEqual(self.grace.on_forced_block.call_args.args[0], 2)

    async def test_cancel_all(self):
        self.tabs.update(2, URL)
        self.grace.start(1, URL, _grace_result(), "vercel billing")
        self.grace.start(2, URL, _grace_result(), "vercel billing")
        self.assertEqual(sorted(self.grace.active_tabs), [1, 2])
        self.assertEqual(self.grace.cancel_all(), 2)
        await self.wait_past_grace()
        self.grace.on_forced_block.assert_not_called()

    async def test_cancel_unknown_tab(self):
        self.assertFalse(self.grace.cancel(99))


class SlowJsonFileStore(JsonFileStore):
    """File store whose writes take a while, like a busy disk."""

    def _write_file(self, data):
        time.sleep(0.2)
        super()._write_file(data)


class TestCancelDuringForcedBlock(unittest.IsolatedAsyncioTestCase):
    """A cancel that lands while the block is being saved."""

    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "storage.json"
        self.statistics = StatisticsTracker(SlowJsonFileStore(self.path))
        self.tabs = TabRegistry()
        self.tabs.update(1, URL)
        self.grace = GracePeriodController(self.statistics, self.tabs.get_url, grace_period_ms=10)
        self.grace.on_forced_block = MagicMock()

    async def asyncTearDown(self):
        await self.grace.shutdown()
        self._tmp.cleanup()

    def blocked_count_on_disk(self):
        return json.loads(self.path.read_text(encoding="utf-8"))["focusStatistics"]["blocked_count"]

    async def test_block_is_signalled_and_counted_once(self):
        self.grace.start(1, URL, _grace_result(), "vercel billing")
        await asyncio.sleep(0.08)
        self.grace.cancel(1)
        await self.grace.shutdown()

        self.grace.on_forced_block.assert_called_once()
        self.assertEqual((await self.statistics.get()).blocked_count, 1)
        self.assertEqual(self.blocked_count_on_disk(), 1)

    async def test_count_survives_the_next_write(self):
        self.grace.start(1, URL, _grace_result(), "vercel billing")
        await asyncio.sleep(0.08)
        self.grace.cancel(1)
        await self.grace.shutdown()

        await self.statistics.commit(focused_ms=1000)
        self.assertEqual(self.blocked_count_on_disk(), 1)



if __name__ == "__main__":
    unittest.main()
