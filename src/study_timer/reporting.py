"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Sequence

from .models import DerivedStats, Session, TimerSnapshot
from .stats import WEEKDAY_NAMES, derive_stats, group_by_day
from .store import SessionStore


class StatsPrinter:
    """Render human-readable statistics and history in the console."""

    def __init__(self, store: SessionStore, user_id: str, history_limit: int = 1000) -> None:
        self.store = store
        self.user_id = user_id
        self.history_limit = history_limit

    def print_stats(self, now: Optional[datetime] = None) -> DerivedStats:
        sessions = self.store.get_sessions(
            self.user_id, limit=self.history_limit, completed_only=True
        )
        stats = derive_stats(sessions, now)
        if not sessions:
            print("No completed sessions yet. Start a timer to see your stats.")
            return stats

        print(f"Stats for {self.user_id}")
        print("-" * 40)
        print(
            f"Today:      {format_duration(stats.today_minutes * 60)} "
            f"({stats.today_session_count} sessions)"
        )
        print(f"This week:  {format_duration(stats.weekly_minutes * 60)}")
        print(f"Day streak: {stats.day_streak}")
        print()
        print("This week by day:")
        peak = max(max(stats.weekday_totals), 1.0)
        for name, minutes in zip(WEEKDAY_NAMES, stats.weekday_totals):
            bar = "#" * int(round(minutes / peak * 20))
            print(f"  {name} {bar:<20} {minutes / 60:.1f}h")

        if stats.activity_distribution:
            print()
            print("Time distribution:")
            for share in stats.activity_distribution:
                print(f"  {share.label:<12} {share.percentage:>3}%")
        return stats

    def print_history(self, label: Optional[str] = None, limit: int = 100) -> list[Session]:
        sessions = self.store.get_sessions(
            self.user_id, limit=limit, completed_only=True, label=label
        )
        if not sessions:
            print("No completed sessions recorded.")
            return sessions

        total = sum(s.elapsed_seconds for s in sessions)
        print(f"{len(sessions)} sessions, {format_duration(total)} in total")
        for session_label, seconds in summarize_sessions(sessions).items():
            print(f"  {session_label:<14} {format_duration(seconds)}")
        for day, day_sessions in group_by_day(sessions):
            print()
            print(format_day(day))
            for session in day_sessions:
                print(
                    f"  {session.start_time.strftime('%H:%M')}  "
                    f"{session.label:<14} {format_duration(session.elapsed_seconds)}"
                )
        return sessions


def describe_snapshot(snapshot: TimerSnapshot) -> str:
    """One status line, e.g. ``Short Break: 05:00 [idle]``.

    The count-up timer shows the time elapsed instead of the time left.
    """
    name = (snapshot.activity or snapshot.mode).name.replace("_", " ").title()
    if snapshot.activity is not None and snapshot.activity.counts_up:
        seconds = snapshot.elapsed_seconds
    else:
        seconds = snapshot.remaining_seconds
    return f"{name}: {format_countdown(seconds)} [{snapshot.state.value}]"


def format_day(day: date, today: Optional[date] = None) -> str:
    today = today or date.today()
    delta = (today - day).days
    if delta == 0:
        return "Today"
    if delta == 1:
        return "Yesterday"
    return day.strftime("%a %d %b %Y")


def format_countdown(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def summarize_sessions(sessions: Sequence[Session]) -> dict[str, float]:
    """Total seconds per label, largest first."""
    totals: dict[str, float] = {}
    for session in sessions:
        totals[session.label] = totals.get(session.label, 0.0) + session.elapsed_seconds
    return dict(sorted(totals.items(), key=lambda item: item[1], reverse=True))
