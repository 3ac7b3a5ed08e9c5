"""Restore the countdown from the store when the timer is (re)activated."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .controller import SessionController
from .cycling import count_completed_work_today
from .models import Mode, Session
from .store import SessionStore, StoreError

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    NONE = "none"
    RESTORED = "restored"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


def remaining_seconds(session: Session, now: datetime) -> int:
    """Planned duration minus whole seconds of wall-clock time since the start."""
    elapsed = math.floor((now - session.start_time).total_seconds())
    return int(session.planned_duration_seconds) - max(0, elapsed)


def reconcile(
    controller: SessionController,
    store: Optional[SessionStore] = None,
    *,
    now: Optional[datetime] = None,
) -> ReconcileOutcome:
    """Bring the controller in line with the user's open session, if any.

    A failed query is treated as "nothing open": the controller starts fresh
    rather than blocking startup.
    """
    store = store or controller.store
    if controller.open_session is not None:
        return ReconcileOutcome.SKIPPED
    now = now or controller.clock()

    try:
        session = store.get_active_session(controller.user_id)
    except StoreError as exc:
        logger.warning("Could not look up open session; starting fresh: %s", exc)
        controller.switch_mode(Mode.WORK)
        return ReconcileOutcome.FAILED

    if session is None:
        controller.switch_mode(Mode.WORK)
        return ReconcileOutcome.NONE

    if session.is_completed:
        # Marked completed but never given an end time; it would block new sessions.
        end_time = session.start_time + timedelta(seconds=session.planned_duration_seconds)
        controller.dispatcher.submit(
            "close completed session",
            store.update_session,
            session.id,
            end_time=end_time,
        )
        controller.switch_mode(Mode.WORK)
        return ReconcileOutcome.NONE

    activity = session.activity
    if activity is not None and activity.counts_up:
        elapsed = max(0, math.floor((now - session.start_time).total_seconds()))
        controller.restore(session, 0, elapsed_seconds=elapsed)
        logger.info("Restored count-up timer %s at %ss", session.id, elapsed)
        return ReconcileOutcome.RESTORED

    remaining = remaining_seconds(session, now)
    if remaining > 0:
        controller.restore(session, remaining)
        logger.info(
            "Restored %s session %s with %ss left (%s)",
            session.label,
            session.id,
            remaining,
            "paused" if session.is_paused else "running",
        )
        return ReconcileOutcome.RESTORED

    end_time = session.start_time + timedelta(seconds=session.planned_duration_seconds)
    work_count = _completed_work_count(controller, store, session, end_time)
    controller.advance_after_elapsed(session, work_count, end_time)
    logger.info(
        "Session %s ran out while inactive; recorded as completed, next is %s",
        session.id,
        controller.mode.name,
    )
    return ReconcileOutcome.COMPLETED


def _completed_work_count(
    controller: SessionController,
    store: SessionStore,
    elapsed_session: Session,
    end_time: datetime,
) -> int:
    settings = controller.settings
    work_seconds = settings.duration_for(Mode.WORK)
    try:
        history = store.get_sessions(
            controller.user_id,
            limit=settings.history_limit,
            completed_only=True,
        )
    except StoreError as exc:
        logger.warning("Could not load session history for cycle count: %s", exc)
        history = []
    count = count_completed_work_today(
        (s for s in history if s.id != elapsed_session.id),
        today=end_time.date(),
        work_seconds=work_seconds,
    )
    if elapsed_session.mode is Mode.WORK:
        count += 1
    return count
