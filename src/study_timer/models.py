"""Domain models for timed study sessions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Mode(str, Enum):
    """Countdown modes, each persisted under a fixed session label."""

    WORK = "focus"
    SHORT_BREAK = "break-short"
    LONG_BREAK = "break-long"

    @property
    def label(self) -> str:
        return self.value

    @property
    def is_break(self) -> bool:
        return self is not Mode.WORK

    @classmethod
    def from_label(cls, label: Optional[str]) -> "Mode":
        """Map a stored session label back to the mode that produced it."""
        if not label:
            return cls.WORK
        lowered = label.strip().lower()
        for mode in cls:
            if mode.value == lowered:
                return mode
        if "long" in lowered:
            return cls.LONG_BREAK
        if "short" in lowered or "break" in lowered:
            return cls.SHORT_BREAK
        return cls.WORK


class Activity(str, Enum):
    """Timers that run outside the pomodoro cycle.

    Tea and lunch breaks count down from a duration the user picks; the
    general timer counts up until it is stopped and has no planned duration.
    """

    GENERAL = "general-timer"
    TEA_BREAK = "tea-break"
    LUNCH_BREAK = "lunch-break"

    @property
    def label(self) -> str:
        return self.value

    @property
    def counts_up(self) -> bool:
        return self is Activity.GENERAL

    @classmethod
    def from_label(cls, label: Optional[str]) -> Optional["Activity"]:
        """Return the activity stored under ``label``, or None for pomodoro labels."""
        if not label:
            return None
        lowered = label.strip().lower()
        for activity in cls:
            if activity.value == lowered:
                return activity
        return None

    @classmethod
    def parse(cls, value: str) -> "Activity":
        """Accept a stored label or a short name such as ``tea``."""
        lowered = value.strip().lower()
        for activity in cls:
            if lowered in (activity.value, activity.value.split("-")[0]):
                return activity
        raise ValueError(f"Unknown activity: {value!r}")


class ControllerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass(slots=True)
class Session:
    """One timed interval (work or break) as persisted by the session store."""

    id: str
    user_id: str
    label: str
    planned_duration_seconds: int
    start_time: datetime
    end_time: Optional[datetime] = None
    is_completed: bool = False
    is_paused: bool = False

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def mode(self) -> Mode:
        return Mode.from_label(self.label)

    @property
    def activity(self) -> Optional[Activity]:
        return Activity.from_label(self.label)

    @property
    def elapsed_seconds(self) -> float:
        """Actual duration of a closed session, capped at the planned duration."""
        if self.end_time is None:
            return 0.0
        seconds = max(0.0, (self.end_time - self.start_time).total_seconds())
        if self.planned_duration_seconds > 0:
            seconds = min(seconds, float(self.planned_duration_seconds))
        return seconds


@dataclass(slots=True)
class PauseLog:
    """Append-only record of a pause; resume_time is stamped when the session resumes."""

    id: int
    session_id: str
    pause_time: datetime
    resume_time: Optional[datetime] = None


@dataclass(slots=True)
class ActivityShare:
    label: str
    percentage: int
    color: str
    minutes: float = 0.0


@dataclass(slots=True)
class DerivedStats:
    """Read model computed on demand from a user's session history."""

    today_minutes: float = 0.0
    weekly_minutes: float = 0.0
    day_streak: int = 0
    weekday_totals: list[float] = field(default_factory=lambda: [0.0] * 7)
    activity_distribution: list[ActivityShare] = field(default_factory=list)
    today_session_count: int = 0
    total_minutes: float = 0.0


@dataclass(slots=True)
class TimerSnapshot:
    """What a UI needs to render the countdown."""

    mode: Mode
    state: ControllerState
    remaining_seconds: int
    total_seconds: int
    session_id: Optional[str] = None
    completed_work_count: int = 0
    activity: Optional[Activity] = None
    elapsed_seconds: int = 0
