"""Focus session state and its persisted form."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

PHASE_FOCUS = "FOCUS"
PHASE_BREAK = "BREAK"
PHASE_PAUSED = "PAUSED"
PHASE_IDLE = "IDLE"
PHASES = (PHASE_FOCUS, PHASE_BREAK, PHASE_PAUSED, PHASE_IDLE)

BREAK_SHORT = "short"
BREAK_LONG = "long"


@dataclass
class FocusSession:
    """
    The single active Pomodoro session.

    Times are epoch milliseconds. `time_left_ms` is only set while PAUSED;
    only a focus phase can be paused, so PAUSED always resumes into FOCUS.
    `current_cycle` is the position in the focus/long-break rotation and
    `cycle_count` the number of focus sessions completed since init.
    """

    keywords: str
    phase: str
    start_time: int
    target_end_time: int
    cycle_count: int = 0
    current_cycle: int = 0
    time_left_ms: Optional[int] = None
    task_completed: bool = False
    break_kind: Optional[str] = None

    def __post_init__(self):
        if self.phase not in PHASES:
            raise ValueError(f"Unknown session phase: {self.phase}")
        if self.target_end_time < self.start_time:
            raise ValueError("target_end_time must not be before start_time")

    @property
    def is_running_focus(self) -> bool:
        return self.phase == PHASE_FOCUS

    @property
    def is_paused(self) -> bool:
        return self.phase == PHASE_PAUSED

    def remaining_ms(self, now: int) -> int:
        """Time left in the current phase (frozen while paused)."""
        if self.is_paused and self.time_left_ms is not None:
            return max(0, self.time_left_ms)
        return max(0, self.target_end_time - now)

    def snapshot(self) -> Dict[str, Any]:
        """Scheduler state snapshot sent to the UI layer."""
        data = {
            "keywords": self.keywords,
            "phase": self.phase,
            "current_cycle": self.current_cycle,
            "cycle_count": self.cycle_count,
            "start_time": self.start_time,
            "target_end_time": self.target_end_time,
            "is_task_completed": self.task_completed,
            "break_kind": self.break_kind,
        }
        if self.time_left_ms is not None:
            data["time_left_ms"] = self.time_left_ms
        return data

    def to_dict(self) -> Dict[str, Any]:
        return self.snapshot()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FocusSession':
        """
        Restore a session from storage.

        Accepts the older layout that used `status`/`session_type` keys.
        """
        phase = data.get("phase") or data.get("status") or PHASE_IDLE
        return cls(
            keywords=data.get("keywords", ""),
            phase=phase,
            start_time=int(data["start_time"]),
            target_end_time=int(data["target_end_time"]),
            cycle_count=int(data.get("cycle_count", 0)),
            current_cycle=int(data.get("current_cycle", 0)),
            time_left_ms=data.get("time_left_ms"),
            task_completed=bool(data.get("is_task_completed", False)),
            break_kind=data.get("break_kind"),
        )
