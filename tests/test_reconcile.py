import time
from datetime import datetime, timedelta

import pytest

from conftest import USER, make_session
from study_timer.controller import SessionController
from study_timer.dispatch import InlineDispatcher, PersistenceDispatcher
from study_timer.models import Activity, ControllerState, Mode
from study_timer.reconcile import ReconcileOutcome, reconcile, remaining_seconds
from study_timer.store import SqliteSessionStore, StoreError

NOW = datetime(2026, 10, 14, 15, 0, 0)


class BrokenStore(SqliteSessionStore):
    def get_active_session(self, user_id):
        raise StoreError("offline")


class SlowUpdateStore(SqliteSessionStore):
    def update_session(self, *args, **kwargs):
        time.sleep(0.05)
        return super().update_session(*args, **kwargs)


def _fresh_controller(store):
    return SessionController(
        store, USER, dispatcher=InlineDispatcher(), clock=lambda: NOW
    )


def _completed_work(store, start, seconds=1500, label="focus"):
    session = store.create_session(USER, label, seconds, start)
    store.update_session(
        session.id, end_time=start + timedelta(seconds=seconds), is_completed=True
    )
    return session


def test_no_open_session_starts_idle_work(store):
    controller = _fresh_controller(store)

    assert reconcile(controller) is ReconcileOutcome.NONE
    assert controller.state is ControllerState.IDLE
    assert controller.mode is Mode.WORK
    assert controller.remaining_seconds == 1500


@pytest.mark.parametrize("elapsed", [0, 1, 100, 899, 1499])
def test_remaining_is_planned_minus_elapsed(store, elapsed):
    store.create_session(USER, "focus", 1500, NOW - timedelta(seconds=elapsed))
    controller = _fresh_controller(store)

    assert reconcile(controller, now=NOW) is ReconcileOutcome.RESTORED
    assert controller.remaining_seconds == 1500 - elapsed
    assert controller.state is ControllerState.RUNNING
    assert controller.mode is Mode.WORK


def test_remaining_floors_partial_seconds():
    session = make_session("focus", NOW - timedelta(seconds=10, milliseconds=900), 25)
    session.end_time = None

    assert remaining_seconds(session, NOW) == 1490


def test_restores_paused_break(store):
    session = store.create_session(USER, "break-long", 900, NOW - timedelta(minutes=5))
    store.update_session(session.id, is_paused=True)
    controller = _fresh_controller(store)

    assert reconcile(controller, now=NOW) is ReconcileOutcome.RESTORED
    assert controller.state is ControllerState.PAUSED
    assert controller.mode is Mode.LONG_BREAK
    assert controller.remaining_seconds == 600
    assert controller.open_session.id == session.id

    # Resuming reuses the restored session.
    assert controller.start().session_id == session.id


def test_elapsed_session_is_completed_at_its_planned_end(store):
    start = NOW - timedelta(hours=2)
    session = store.create_session(USER, "focus", 1500, start)
    controller = _fresh_controller(store)

    assert reconcile(controller, now=NOW) is ReconcileOutcome.COMPLETED

    closed = store.get_session(session.id)
    assert closed.is_completed
    assert closed.end_time == start + timedelta(seconds=1500)
    assert controller.mode is Mode.SHORT_BREAK
    assert controller.state is ControllerState.IDLE
    assert controller.remaining_seconds == 300
    assert controller.completed_work_count == 1
    assert store.get_active_session(USER) is None


def test_elapsed_work_uses_persisted_history_for_long_break(store):
    day_start = NOW.replace(hour=8)
    for i in range(3):
        _completed_work(store, day_start + timedelta(minutes=30 * i))
    # Yesterday's work does not count towards today's cycle.
    _completed_work(store, day_start - timedelta(days=1))
    store.create_session(USER, "focus", 1500, NOW - timedelta(minutes=30))
    controller = _fresh_controller(store)
    assert controller.completed_work_count == 0

    assert reconcile(controller, now=NOW) is ReconcileOutcome.COMPLETED
    assert controller.completed_work_count == 4
    assert controller.mode is Mode.LONG_BREAK
    assert controller.remaining_seconds == 900


def test_elapsed_break_returns_to_work(store):
    for i in range(4):
        _completed_work(store, NOW.replace(hour=8) + timedelta(minutes=30 * i))
    store.create_session(USER, "break-short", 300, NOW - timedelta(minutes=10))
    controller = _fresh_controller(store)

    assert reconcile(controller, now=NOW) is ReconcileOutcome.COMPLETED
    assert controller.mode is Mode.WORK
    assert controller.completed_work_count == 4


def test_query_failure_falls_back_to_idle(db_path):
    controller = _fresh_controller(BrokenStore(db_path))

    assert reconcile(controller) is ReconcileOutcome.FAILED
    assert controller.state is ControllerState.IDLE
    assert controller.mode is Mode.WORK


def test_skipped_when_a_session_is_already_tracked(store):
    controller = _fresh_controller(store)
    controller.start()

    assert reconcile(controller) is ReconcileOutcome.SKIPPED
    assert controller.state is ControllerState.RUNNING


def test_start_right_after_elapsed_session_is_closed(db_path):
    store = SlowUpdateStore(db_path)
    elapsed = store.create_session(USER, "focus", 1500, NOW - timedelta(hours=1))
    controller = SessionController(
        store, USER, dispatcher=PersistenceDispatcher(), clock=lambda: NOW
    )

    assert reconcile(controller, now=NOW) is ReconcileOutcome.COMPLETED
    snapshot = controller.start()

    assert snapshot.state is ControllerState.RUNNING
    assert snapshot.mode is Mode.SHORT_BREAK
    assert store.get_session(elapsed.id).is_completed
    assert store.get_active_session(USER).id == snapshot.session_id
    controller.close()


def test_completed_row_without_end_time_is_closed(store):
    start = NOW - timedelta(hours=1)
    session = store.create_session(USER, "focus", 1500, start)
    store.update_session(session.id, is_completed=True)
    controller = _fresh_controller(store)

    assert reconcile(controller, now=NOW) is ReconcileOutcome.NONE

    assert store.get_session(session.id).end_time == start + timedelta(seconds=1500)
    assert store.get_active_session(USER) is None
    assert controller.start().state is ControllerState.RUNNING


def test_general_timer_resumes_with_elapsed_time(store):
    session = store.create_session(USER, "general-timer", 0, NOW - timedelta(minutes=10))
    controller = _fresh_controller(store)

    assert reconcile(controller, now=NOW) is ReconcileOutcome.RESTORED

    snapshot = controller.snapshot()
    assert snapshot.activity is Activity.GENERAL
    assert snapshot.elapsed_seconds == 600
    assert snapshot.state is ControllerState.RUNNING
    assert snapshot.session_id == session.id
    controller.tick()
    assert controller.snapshot().elapsed_seconds == 601


def test_restores_tea_break_countdown(store):
    store.create_session(USER, "tea-break", 900, NOW - timedelta(minutes=5))
    controller = _fresh_controller(store)

    assert reconcile(controller, now=NOW) is ReconcileOutcome.RESTORED
    assert controller.activity is Activity.TEA_BREAK
    assert controller.remaining_seconds == 600
    assert controller.mode is Mode.WORK


def test_elapsed_lunch_break_leaves_the_cycle_alone(store):
    session = store.create_session(USER, "lunch-break", 1800, NOW - timedelta(hours=1))
    controller = _fresh_controller(store)

    assert reconcile(controller, now=NOW) is ReconcileOutcome.COMPLETED
    assert store.get_session(session.id).is_completed
    assert controller.mode is Mode.WORK
    assert controller.activity is None
    assert controller.completed_work_count == 0
