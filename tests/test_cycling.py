from datetime import date, datetime

import pytest

from conftest import make_session
from study_timer.cycling import count_completed_work_today, mode_after, next_mode
from study_timer.models import Mode


@pytest.mark.parametrize("count", [1, 2, 3, 5, 6, 7])
def test_next_mode_short_break_between_long_breaks(count):
    assert next_mode(count) is Mode.SHORT_BREAK


@pytest.mark.parametrize("count", [4, 8, 12])
def test_next_mode_long_break_every_fourth(count):
    assert next_mode(count) is Mode.LONG_BREAK


def test_next_mode_zero_is_short_break():
    assert next_mode(0) is Mode.SHORT_BREAK


def test_next_mode_custom_cadence():
    assert next_mode(2, long_break_every=2) is Mode.LONG_BREAK
    assert next_mode(3, long_break_every=2) is Mode.SHORT_BREAK


@pytest.mark.parametrize("count", [0, 3, 4, 8])
@pytest.mark.parametrize("mode", [Mode.SHORT_BREAK, Mode.LONG_BREAK])
def test_breaks_always_return_to_work(mode, count):
    assert mode_after(mode, count) is Mode.WORK


def test_work_follows_cycle():
    assert mode_after(Mode.WORK, 4) is Mode.LONG_BREAK
    assert mode_after(Mode.WORK, 1) is Mode.SHORT_BREAK


def test_count_completed_work_today_filters_history():
    today = date(2026, 10, 14)
    sessions = [
        make_session("focus", datetime(2026, 10, 14, 9, 0), 25),
        make_session("focus", datetime(2026, 10, 14, 10, 0), 25),
        # wrong day
        make_session("focus", datetime(2026, 10, 13, 10, 0), 25),
        # custom length
        make_session("focus", datetime(2026, 10, 14, 11, 0), 50),
        # cancelled
        make_session("focus", datetime(2026, 10, 14, 12, 0), 25, completed=False),
        make_session("break-short", datetime(2026, 10, 14, 9, 25), 5),
    ]

    assert count_completed_work_today(sessions, today=today, work_seconds=1500) == 2
