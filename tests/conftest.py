from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from study_timer.config import TimerSettings
from study_timer.controller import SessionController
from study_timer.dispatch import InlineDispatcher
from study_timer.models import Session
from study_timer.store import SqliteSessionStore

USER = "student-1"


class FakeClock:
    """Deterministic stand-in for datetime.now."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class ErrorRecorder:
    def __init__(self) -> None:
        self.errors: list[tuple[str, Exception]] = []

    def __call__(self, description: str, exc: Exception) -> None:
        self.errors.append((description, exc))


def make_session(
    label: str,
    start: datetime,
    minutes: float,
    *,
    completed: bool = True,
    user_id: str = USER,
) -> Session:
    seconds = int(minutes * 60)
    return Session(
        id=str(uuid.uuid4()),
        user_id=user_id,
        label=label,
        planned_duration_seconds=seconds,
        start_time=start,
        end_time=start + timedelta(seconds=seconds),
        is_completed=completed,
    )


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "sessions.sqlite3"


@pytest.fixture
def store(db_path: Path) -> SqliteSessionStore:
    return SqliteSessionStore(db_path)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 14, 9, 0, 0))


@pytest.fixture
def errors() -> ErrorRecorder:
    return ErrorRecorder()


@pytest.fixture
def short_settings() -> TimerSettings:
    return TimerSettings(
        work_duration=timedelta(seconds=3),
        short_break_duration=timedelta(seconds=2),
        long_break_duration=timedelta(seconds=4),
        auto_start_next=False,
    )


@pytest.fixture
def controller(store, clock, errors) -> SessionController:
    return SessionController(
        store,
        USER,
        dispatcher=InlineDispatcher(),
        clock=clock,
        on_error=errors,
    )
