"""Pomodoro cycling: which mode follows a completed countdown."""

from __future__ import annotations

from datetime import date
from typing import Iterable

from .models import Mode, Session


def next_mode(completed_work_count: int, long_break_every: int = 4) -> Mode:
    """Break that follows a completed work session.

    Every ``long_break_every``-th completed work session earns a long break.
    """
    if completed_work_count > 0 and completed_work_count % long_break_every == 0:
        return Mode.LONG_BREAK
    return Mode.SHORT_BREAK


def mode_after(
    completed_mode: Mode, completed_work_count: int, long_break_every: int = 4
) -> Mode:
    if completed_mode is Mode.WORK:
        return next_mode(completed_work_count, long_break_every)
    return Mode.WORK


def count_completed_work_today(
    sessions: Iterable[Session],
    *,
    today: date,
    work_seconds: int,
    work_label: str = Mode.WORK.label,
) -> int:
    """Count today's completed work sessions of the standard work length.

    The in-memory cycle counter is lost on restart; this rebuilds it from
    persisted history.
    """
    return sum(
        1
        for session in sessions
        if session.is_completed
        and session.label == work_label
        and session.planned_duration_seconds == work_seconds
        and session.start_time.date() == today
    )
