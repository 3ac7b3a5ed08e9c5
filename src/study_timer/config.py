"""Configuration models and helpers for the study timer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from .models import Activity, Mode


@dataclass(slots=True)
class TimerSettings:
    """Runtime configuration for the session controller."""

    work_duration: timedelta = timedelta(minutes=25)
    short_break_duration: timedelta = timedelta(minutes=5)
    long_break_duration: timedelta = timedelta(minutes=15)
    tea_break_duration: timedelta = timedelta(minutes=15)
    lunch_break_duration: timedelta = timedelta(minutes=30)
    long_break_every: int = 4
    tick_interval: timedelta = timedelta(seconds=1)
    auto_start_next: bool = True
    history_limit: int = 1000

    def __post_init__(self) -> None:
        if self.long_break_every < 1:
            raise ValueError("long_break_every must be at least 1")
        for mode in Mode:
            if self.duration_for(mode) <= 0:
                raise ValueError(f"duration for {mode.name} must be positive")
        for activity in (Activity.TEA_BREAK, Activity.LUNCH_BREAK):
            if self.duration_for_activity(activity) <= 0:
                raise ValueError(f"duration for {activity.name} must be positive")

    def duration_for(self, mode: Mode) -> int:
        """Return the fixed countdown length for a mode in whole seconds."""
        if mode is Mode.WORK:
            duration = self.work_duration
        elif mode is Mode.SHORT_BREAK:
            duration = self.short_break_duration
        else:
            duration = self.long_break_duration
        return int(duration.total_seconds())

    def duration_for_activity(self, activity: Activity) -> int:
        """Default length of an activity timer; 0 for the count-up timer."""
        if activity is Activity.TEA_BREAK:
            return int(self.tea_break_duration.total_seconds())
        if activity is Activity.LUNCH_BREAK:
            return int(self.lunch_break_duration.total_seconds())
        return 0

    @classmethod
    def from_minutes(
        cls,
        work_minutes: float,
        short_break_minutes: float,
        long_break_minutes: float,
        long_break_every: int = 4,
        auto_start_next: bool = True,
    ) -> "TimerSettings":
        return cls(
            work_duration=timedelta(minutes=work_minutes),
            short_break_duration=timedelta(minutes=short_break_minutes),
            long_break_duration=timedelta(minutes=long_break_minutes),
            long_break_every=long_break_every,
            auto_start_next=auto_start_next,
        )
