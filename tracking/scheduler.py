"""
Pomodoro session scheduler for RealFocus.

Owns the single FocusSession and the single scheduler alarm. Every
transition runs under one lock and persists session and statistics in
one store write, so no handler ever sees a half-applied transition.

Phases: IDLE -> FOCUS <-> PAUSED, FOCUS -> BREAK -> FOCUS, any -> IDLE.
After every fourth focus the break is a long one.

Callbacks:
    on_state_change(snapshot: dict)
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Optional

import config
from storage.cache import now_ms
from storage.kv_store import KeyValueStore
from tracking.alarms import AlarmClock
from tracking.session import (
    FocusSession,
    PHASE_BREAK,
    PHASE_FOCUS,
    PHASE_IDLE,
    PHASE_PAUSED,
    BREAK_LONG,
    BREAK_SHORT,
)
from tracking.statistics import StatisticsTracker

logger = logging.getLogger(__name__)


def _ok(**extra) -> Dict[str, Any]:
    result = {"success": True, "error": None, "error_type": None}
    result.update(extra)
    return result


def _rejected(message: str, error_type: str = "invalid_state") -> Dict[str, Any]:
    return {"success": False, "error": message, "error_type": error_type}


class SessionScheduler:
    """
    Pomodoro state machine.

    Every public operation returns
        {"success": bool, "error": str | None, "error_type": str | None, ...}
    error_type values: "invalid_state", "invalid_input"
    A rejected operation leaves the session unchanged.
    """

    def __init__(
        self,
        store: KeyValueStore,
        statistics: StatisticsTracker,
        alarms: AlarmClock,
        clock: Optional[Callable[[], int]] = None,
        focus_ms: Optional[int] = None,
        short_break_ms: Optional[int] = None,
        long_break_ms: Optional[int] = None,
        long_break_interval: Optional[int] = None,
        alarm_name: Optional[str] = None,
    ):
        self.store = store
        self.statistics = statistics
        self.alarms = alarms
        self._clock = clock or now_ms
        self.focus_ms = focus_ms if focus_ms is not None else config.POMODORO_FOCUS_MS
        self.short_break_ms = short_break_ms if short_break_ms is not None else config.POMODORO_SHORT_BREAK_MS
        self.long_break_ms = long_break_ms if long_break_ms is not None else config.POMODORO_LONG_BREAK_MS
        self.long_break_interval = long_break_interval or config.POMODORO_LONG_BREAK_INTERVAL
        self.alarm_name = alarm_name or config.POMODORO_ALARM_NAME

        self.session: Optional[FocusSession] = None
        self._lock = asyncio.Lock()

        self.on_state_change: Optional[Callable[[Dict[str, Any]], None]] = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def phase(self) -> str:
        return self.session.phase if self.session else PHASE_IDLE

    @property
    def keywords(self) -> Optional[str]:
        return self.session.keywords if self.session else None

    def snapshot(self) -> Dict[str, Any]:
        if self.session is None:
            return {"phase": PHASE_IDLE}
        data = self.session.snapshot()
        data["remaining_ms"] = self.session.remaining_ms(self._clock())
        return data

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def init(self, keywords: str) -> Dict[str, Any]:
        """
        Start a new session in FOCUS.

        Replaces any existing session; a running focus phase is flushed
        into statistics first.
        """
        if not isinstance(keywords, str) or not keywords.strip():
            return _rejected("Focus keywords are required", "invalid_input")

        async with self._lock:
            now = self._clock()
            flushed = self._running_focus_elapsed(now)
            session = FocusSession(
                keywords=keywords.strip(),
                phase=PHASE_FOCUS,
                start_time=now,
                target_end_time=now + self.focus_ms,
            )
            await self._commit(session, flushed)
            self._arm()

        logger.info(f"Focus session started: '{self.session.keywords}'")
        self._notify_state_change()
        return _ok(state=self.snapshot())

    async def pause(self) -> Dict[str, Any]:
        async with self._lock:
            if self.session is None or self.session.phase != PHASE_FOCUS:
                return _rejected("Can only pause a running focus session")

            now = self._clock()
            flushed = self._running_focus_elapsed(now)
            session = replace(self.session, phase=PHASE_PAUSED)
            session.time_left_ms = max(0, session.target_end_time - now)
            await self._commit(session, flushed)
            self.alarms.cancel(self.alarm_name)

        logger.info(f"Focus paused with {self.session.time_left_ms}ms left")
        self._notify_state_change()
        return _ok(state=self.snapshot())

    async def resume(self) -> Dict[str, Any]:
        async with self._lock:
            if self.session is None or self.session.phase != PHASE_PAUSED:
                return _rejected("Can only resume a paused session")

            now = self._clock()
            time_left = self.session.time_left_ms or 0
            session = replace(
                self.session,
                phase=PHASE_FOCUS,
                start_time=now,
                target_end_time=now + time_left,
                time_left_ms=None,
            )
            await self._commit(session)
            self._arm()

        logger.info("Focus resumed")
        self._notify_state_change()
        return _ok(state=self.snapshot())

    async def stop(self) -> Dict[str, Any]:
        """End the session entirely. Statistics are kept."""
        async with self._lock:
            if self.session is None:
                return _rejected("No active session")

            flushed = self._running_focus_elapsed(self._clock())
            stats = await self.statistics.commit(
                focused_ms=flushed,
                extra={config.POMODORO_STATE_KEY: None},
            )
            self.session = None
            self.alarms.cancel(self.alarm_name)

        logger.info("Session stopped")
        self._notify_state_change()
        return _ok(state=self.snapshot(), statistics=stats.snapshot())

    async def end_focus(self) -> Dict[str, Any]:
        """Finish the focus phase now and start the matching break."""
        async with self._lock:
            if self.session is None or self.session.phase != PHASE_FOCUS:
                return _rejected("No running focus session to end")
            await self._enter_break()

        self._notify_state_change()
        return _ok(state=self.snapshot())

    async def end_break(self) -> Dict[str, Any]:
        async with self._lock:
            if self.session is None or self.session.phase != PHASE_BREAK:
                return _rejected("No break to end")
            await self._enter_focus()

        self._notify_state_change()
        return _ok(state=self.snapshot())

    async def skip_break(self) -> Dict[str, Any]:
        """User-initiated early end of a break."""
        logger.info("Break skipped by user")
        return await self.end_break()

    async def mark_task_complete(self, next_step: Optional[str] = None) -> Dict[str, Any]:
        """
        Flag the current task as done.

        With next_step="break" a running focus phase also ends right away.
        """
        async with self._lock:
            if self.session is None:
                return _rejected("No active session")
            session = replace(self.session, task_completed=True)
            if next_step == "break" and session.phase == PHASE_FOCUS:
                await self._enter_break(session)
            else:
                await self._commit(session)

        self._notify_state_change()
        result = _ok(state=self.snapshot())
        if next_step:
            result["next"] = next_step
        return result

    async def set_keywords(self, keywords: str) -> Dict[str, Any]:
        """
        Change the focus keywords.

        Returns "changed" so the caller can decide whether cached
        judgments are stale.
        """
        if not isinstance(keywords, str) or not keywords.strip():
            return _rejected("Focus keywords are required", "invalid_input")
        keywords = keywords.strip()

        async with self._lock:
            previous = await self._stored_keywords()
            if self.session is not None:
                await self._commit(replace(self.session, keywords=keywords))
            else:
                await self.store.set({config.KEYWORDS_KEY: keywords})

        self._notify_state_change()
        return _ok(state=self.snapshot(), previous=previous, changed=previous != keywords)

    async def current_keywords(self) -> Optional[str]:
        """Keywords of the active session, else the last ones saved."""
        if self.session is not None:
            return self.session.keywords
        return await self._stored_keywords()

    # ------------------------------------------------------------------
    # Alarm and restore
    # ------------------------------------------------------------------

    async def handle_alarm(self) -> None:
        """
        Scheduler alarm callback.

        Ignored when no session exists or the phase has no deadline
        (paused, idle).
        """
        async with self._lock:
            if self.session is None:
                logger.debug("Alarm fired without a session, ignoring")
                return
            if self.session.phase == PHASE_FOCUS:
                await self._enter_break()
            elif self.session.phase == PHASE_BREAK:
                await self._enter_focus()
            else:
                logger.debug(f"Alarm fired in phase {self.session.phase}, ignoring")
                return

        self._notify_state_change()

    async def restore(self) -> bool:
        """
        Reload a persisted session and re-arm its alarm.

        A deadline that passed while the process was down fires right away.
        """
        async with self._lock:
            result = await self.store.get([config.POMODORO_STATE_KEY])
            data = result.get(config.POMODORO_STATE_KEY)
            if not isinstance(data, dict):
                return False
            try:
                session = FocusSession.from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Discarding unreadable session state: {e}")
                await self.store.remove([config.POMODORO_STATE_KEY])
                return False

            if session.phase == PHASE_IDLE:
                return False
            self.session = session
            if session.phase in (PHASE_FOCUS, PHASE_BREAK):
                self._arm()

        logger.info(f"Restored session in phase {self.session.phase}")
        self._notify_state_change()
        return True

    async def shutdown(self) -> None:
        self.alarms.cancel(self.alarm_name)

    # ------------------------------------------------------------------
    # Transitions (caller holds the lock)
    # ------------------------------------------------------------------

    async def _enter_break(self, base: Optional[FocusSession] = None) -> None:
        base = base or self.session
        now = self._clock()
        flushed = self._running_focus_elapsed(now)

        completed = base.current_cycle + 1
        if completed < self.long_break_interval:
            break_kind, cycle, duration = BREAK_SHORT, completed, self.short_break_ms
        else:
            break_kind, cycle, duration = BREAK_LONG, 0, self.long_break_ms

        session = replace(
            base,
            phase=PHASE_BREAK,
            break_kind=break_kind,
            current_cycle=cycle,
            start_time=now,
            target_end_time=now + duration,
        )
        await self._commit(session, flushed)
        self._arm()
        logger.info(f"Focus ended, starting {break_kind} break (cycle {cycle})")

    async def _enter_focus(self) -> None:
        now = self._clock()
        cycle = self.session.current_cycle
        if cycle >= self.long_break_interval:
            cycle = 0
        session = replace(
            self.session,
            phase=PHASE_FOCUS,
            cycle_count=self.session.cycle_count + 1,
            current_cycle=cycle,
            break_kind=None,
            task_completed=False,
            start_time=now,
            target_end_time=now + self.focus_ms,
        )
        await self._commit(session)
        self._arm()
        logger.info(f"Break ended, focus #{session.cycle_count + 1} started")

    def _running_focus_elapsed(self, now: int) -> int:
        if self.session is None or self.session.phase != PHASE_FOCUS:
            return 0
        end = min(now, self.session.target_end_time)
        return max(0, end - self.session.start_time)

    async def _commit(self, session: FocusSession, focused_ms: int = 0) -> None:
        """Persist `session` with the statistics delta, then make it current."""
        await self.statistics.commit(
            focused_ms=focused_ms,
            extra={
                config.POMODORO_STATE_KEY: session.to_dict(),
                config.KEYWORDS_KEY: session.keywords,
            },
        )
        self.session = session

    async def _stored_keywords(self) -> Optional[str]:
        result = await self.store.get([config.KEYWORDS_KEY])
        return result.get(config.KEYWORDS_KEY)

    def _arm(self) -> None:
        self.alarms.schedule(self.alarm_name, self.session.target_end_time, self.handle_alarm)

    def _notify_state_change(self) -> None:
        if self.on_state_change:
            try:
                self.on_state_change(self.snapshot())
            except Exception as e:
                logger.debug(f"on_state_change callback error: {e}")
