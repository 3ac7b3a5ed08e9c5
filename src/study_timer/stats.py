"""Statistics derived from a user's session history.

All functions are pure: they take the sessions (usually the completed ones,
as returned by ``SessionStore.get_sessions(completed_only=True)``) and the
current local time, and never touch the store.
"""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence

from .models import ActivityShare, DerivedStats, Session

WEEKDAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")

DEFAULT_CATEGORY = "general"

# Checked in order; the first keyword found in the label wins.
CATEGORY_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("lunch", "lunch-break"),
    ("점심", "lunch-break"),
    ("tea", "tea-break"),
    ("차", "tea-break"),
    ("휴식", "tea-break"),
    ("focus", "focus"),
    ("집중", "focus"),
    ("pomodoro", "pomodoro"),
    ("뽀모도로", "pomodoro"),
    ("short", "short-break"),
    ("짧은", "short-break"),
    ("long", "long-break"),
    ("긴", "long-break"),
)

CATEGORY_COLORS: dict[str, str] = {
    "general": "#007AFF",
    "lunch-break": "#FF9500",
    "tea-break": "#34C759",
    "focus": "#AF52DE",
    "pomodoro": "#FF3B30",
    "short-break": "#00C7BE",
    "long-break": "#8E8E93",
}


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(value: datetime) -> datetime:
    """Local midnight of the Sunday that starts ``value``'s week."""
    midnight = start_of_day(value)
    days_since_sunday = (midnight.weekday() + 1) % 7
    return midnight - timedelta(days=days_since_sunday)


def session_minutes(session: Session) -> float:
    return session.elapsed_seconds / 60.0


def _sum_minutes(
    sessions: Iterable[Session], start: datetime, end: Optional[datetime] = None
) -> float:
    return sum(
        session_minutes(s)
        for s in sessions
        if s.start_time >= start and (end is None or s.start_time < end)
    )


def today_minutes(sessions: Iterable[Session], now: Optional[datetime] = None) -> float:
    midnight = start_of_day(now or datetime.now())
    return _sum_minutes(sessions, midnight, midnight + timedelta(days=1))


def weekly_minutes(sessions: Iterable[Session], now: Optional[datetime] = None) -> float:
    return _sum_minutes(sessions, start_of_week(now or datetime.now()))


def today_session_count(sessions: Iterable[Session], now: Optional[datetime] = None) -> int:
    today = (now or datetime.now()).date()
    return sum(1 for s in sessions if s.start_time.date() == today)


def day_streak(sessions: Iterable[Session], now: Optional[datetime] = None) -> int:
    """Consecutive days, ending today, with at least one session."""
    days = {s.start_time.date() for s in sessions}
    current = (now or datetime.now()).date()
    streak = 0
    while current in days:
        streak += 1
        current -= timedelta(days=1)
    return streak


def weekday_totals(sessions: Iterable[Session], now: Optional[datetime] = None) -> list[float]:
    """Minutes per day of the current week, Sunday first."""
    week_start = start_of_week(now or datetime.now())
    week_end = week_start + timedelta(days=7)
    totals = [0.0] * 7
    for session in sessions:
        if week_start <= session.start_time < week_end:
            index = (session.start_time - week_start).days
            totals[index] += session_minutes(session)
    return totals


def categorize(label: Optional[str]) -> str:
    if not label:
        return DEFAULT_CATEGORY
    lowered = label.lower()
    for keyword, category in CATEGORY_KEYWORDS:
        if keyword in lowered:
            return category
    return DEFAULT_CATEGORY


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def activity_distribution(sessions: Iterable[Session], top: int = 4) -> list[ActivityShare]:
    """Share of minutes per activity category, largest first."""
    minutes_by_category: dict[str, float] = {}
    for session in sessions:
        category = categorize(session.label)
        minutes_by_category[category] = (
            minutes_by_category.get(category, 0.0) + session_minutes(session)
        )

    total = sum(minutes_by_category.values())
    if total <= 0:
        return []

    shares = [
        ActivityShare(
            label=category,
            percentage=_round_half_up(minutes / total * 100),
            color=CATEGORY_COLORS.get(category, CATEGORY_COLORS[DEFAULT_CATEGORY]),
            minutes=minutes,
        )
        for category, minutes in minutes_by_category.items()
    ]
    # sorted() is stable, so ties keep first-encountered order.
    shares = sorted(shares, key=lambda share: share.percentage, reverse=True)
    return shares[:top]


def group_by_day(sessions: Iterable[Session]) -> list[tuple[date, list[Session]]]:
    """Sessions grouped by local calendar day, newest day first."""
    grouped: defaultdict[date, list[Session]] = defaultdict(list)
    for session in sessions:
        grouped[session.start_time.date()].append(session)
    return sorted(grouped.items(), key=lambda item: item[0], reverse=True)


def derive_stats(sessions: Sequence[Session], now: Optional[datetime] = None) -> DerivedStats:
    now = now or datetime.now()
    return DerivedStats(
        today_minutes=today_minutes(sessions, now),
        weekly_minutes=weekly_minutes(sessions, now),
        day_streak=day_streak(sessions, now),
        weekday_totals=weekday_totals(sessions, now),
        activity_distribution=activity_distribution(sessions),
        today_session_count=today_session_count(sessions, now),
        total_minutes=sum(session_minutes(s) for s in sessions),
    )
