"""
Tests for tracking/alarms.py.
"""

import sys
import asyncio
import unittest
from pathlib import Path
from unittest.mock import AsyncMock

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from tracking.alarms import AlarmClock


class FakeClock:
    def __init__(self, start=1_700_000_000_000):
        self.now = start

    def __call__(self):
        return self.now


class TestAlarmClock(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.clock = FakeClock()
        self.alarms = AlarmClock(clock=self.clock)

    async def asyncTearDown(self):
        await self.alarms.shutdown()

    async def test_due_alarm_fires(self):
        callback = AsyncMock()
        self.alarms.schedule("pomodoro_timer", self.clock.now + 10, callback)
        self.assertTrue(self.alarms.has("pomodoro_timer"))
        self.assertEqual(self.alarms.scheduled_time("pomodoro_timer"), self.clock.now + 10)
        await asyncio.sleep(0.1)
        callback.assert_awaited_once()
        self.assertFalse(self.alarms.has("pomodoro_timer"))

    async def test_past_alarm_fires_immediately(self):
        callback = AsyncMock()
        self.alarms.schedule("pomodoro_timer", self.clock.now - 60_000, callback)
        await asyncio.sleep(0.01)
        callback.assert_awaited_once()

    async def test_cancelled_alarm_never_fires(self):
        callback = AsyncMock()
        self.alarms.schedule("pomodoro_timer", self.clock.now + 10, callback)
        self.assertTrue(self.alarms.cancel("pomodoro_timer"))
        await asyncio.sleep(0.05)
        callback.assert_not_awaited()
        self.assertFalse(self.alarms.cancel("pomodoro_timer"))

    async def test_reschedule_replaces(self):
        first, second = AsyncMock(), AsyncMock()
        self.alarms.schedule("pomodoro_timer", self.clock.now + 10, first)
        self.alarms.schedule("pomodoro_timer", self.clock.now + 20, second)
        await asyncio.sleep(0.1)
        first.assert_not_awaited()
        second.assert_awaited_once()

    async def test_handler_errors_are_contained(self):
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        after = AsyncMock()
        self.alarms.schedule("a", self.clock.now, failing)
        self.alarms.schedule("b", self.clock.now + 5, after)
        await asyncio.sleep(0.05)
        failing.assert_awaited_once()
        after.assert_awaited_once()

    async def test_shutdown_cancels_pending(self):
        callback = AsyncMock()
        self.alarms.schedule("pomodoro_timer", self.clock.now + 50, callback)
        await self.alarms.shutdown()
        await asyncio.sleep(0.1)
        callback.assert_not_awaited()


if __name__ == "__main__":
    unittest.main()
