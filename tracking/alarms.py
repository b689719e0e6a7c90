"""
Named one-shot alarms at absolute wall-clock times.

Each name holds at most one alarm; scheduling a name again replaces the
previous alarm. Cancelling an alarm guarantees its callback never runs.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from storage.cache import now_ms

logger = logging.getLogger(__name__)

AlarmCallback = Callable[[], Awaitable[None]]


class AlarmClock:
    """Alarm facility on top of the running event loop."""

    def __init__(self, clock: Optional[Callable[[], int]] = None):
        self._clock = clock or now_ms
        self._handles: Dict[str, asyncio.TimerHandle] = {}
        self._when: Dict[str, int] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def schedule(self, name: str, when_ms: int, callback: AlarmCallback) -> None:
        """
        Arm alarm `name` to fire at epoch ms `when_ms`.

        An alarm whose time has already passed fires on the next loop
        iteration.
        """
        self.cancel(name)
        loop = asyncio.get_running_loop()
        delay = max(0, int(when_ms) - self._clock()) / 1000.0
        self._when[name] = int(when_ms)
        self._handles[name] = loop.call_later(delay, self._fire, name, callback)
        logger.debug(f"Alarm '{name}' scheduled in {delay:.1f}s")

    def cancel(self, name: str) -> bool:
        """Cancel alarm `name`. Returns True if something was cancelled."""
        cancelled = False
        handle = self._handles.pop(name, None)
        self._when.pop(name, None)
        if handle is not None:
            handle.cancel()
            cancelled = True

        # A fired alarm may still be waiting to run its callback
        task = self._tasks.get(name)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            self._tasks.pop(name, None)
            cancelled = True

        if cancelled:
            logger.debug(f"Alarm '{name}' cancelled")
        return cancelled

    def has(self, name: str) -> bool:
        return name in self._handles

    def scheduled_time(self, name: str) -> Optional[int]:
        return self._when.get(name)

    def _fire(self, name: str, callback: AlarmCallback) -> None:
        self._handles.pop(name, None)
        self._when.pop(name, None)
        task = asyncio.ensure_future(self._run(name, callback))
        self._tasks[name] = task
        task.add_done_callback(lambda t, n=name: self._forget_task(n, t))

    def _forget_task(self, name: str, task: asyncio.Task) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]

    async def _run(self, name: str, callback: AlarmCallback) -> None:
        logger.info(f"Alarm '{name}' fired")
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Alarm '{name}' handler failed: {e}", exc_info=True)

    async def shutdown(self) -> None:
        """Cancel every pending alarm and wait for running handlers to stop."""
        for name in list(self._handles):
            self.cancel(name)
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
