"""Countdown state machine for study and break sessions."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from .config import TimerSettings
from .cycling import mode_after
from .dispatch import InlineDispatcher, PersistenceDispatcher
from .models import Activity, ControllerState, Mode, Session, TimerSnapshot
from .store import OpenSessionExistsError, SessionStore, StoreError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Listener = Callable[[TimerSnapshot], None]
ErrorCallback = Callable[[str, Exception], None]


class SessionStartError(RuntimeError):
    """The session could not be recorded, so the countdown was not started."""


class SessionController:
    """Owns the countdown, the current mode and the user's one open session.

    States:
        IDLE -> RUNNING <-> PAUSED
        RUNNING -> COMPLETED -> IDLE (next mode, optionally auto-started)
        RUNNING/PAUSED -> IDLE via reset() or switch_mode()

    Only ``start()`` talks to the store synchronously: a session that cannot be
    created is never counted down locally. Every other write goes through the
    dispatcher and never blocks or rewinds the countdown.

    Activity timers (tea break, lunch break, the count-up general timer) run
    through the same states but sit outside the pomodoro cycle: finishing one
    leaves the current mode and the work counter untouched.
    """

    def __init__(
        self,
        store: SessionStore,
        user_id: str,
        settings: Optional[TimerSettings] = None,
        *,
        dispatcher: Optional[InlineDispatcher | PersistenceDispatcher] = None,
        clock: Optional[Clock] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.settings = settings or TimerSettings()
        self.clock: Clock = clock or datetime.now
        self.on_error = on_error
        self.dispatcher = dispatcher or PersistenceDispatcher()
        if self.dispatcher.on_error is None:
            self.dispatcher.on_error = self._report_error

        self.completed_work_count = 0
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []
        self._mode = Mode.WORK
        self._activity: Optional[Activity] = None
        self._state = ControllerState.IDLE
        self._total = self.settings.duration_for(Mode.WORK)
        self._remaining = self._total
        self._counted_up = 0
        self._open_session: Optional[Session] = None
        # Sessions closed locally whose close has not reached the store yet.
        self._unsaved_closes: dict[str, Session] = {}

    # ---------- Read model ----------
    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def activity(self) -> Optional[Activity]:
        return self._activity

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    @property
    def open_session(self) -> Optional[Session]:
        return self._open_session

    def snapshot(self) -> TimerSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ---------- Actions ----------
    def start(self) -> TimerSnapshot:
        """Start a fresh countdown, or resume the paused one."""
        with self._lock:
            if self._state is ControllerState.RUNNING:
                return self._snapshot_locked()
            if self._open_session is not None:
                self._resume_locked()
            else:
                self._create_session_locked(self._mode.label, self._total)
            self._state = ControllerState.RUNNING
            snapshot = self._snapshot_locked()
        self._notify(snapshot)
        return snapshot

    def resume(self) -> TimerSnapshot:
        with self._lock:
            if self._state is not ControllerState.PAUSED:
                return self._snapshot_locked()
            self._resume_locked()
            self._state = ControllerState.RUNNING
            snapshot = self._snapshot_locked()
        self._notify(snapshot)
        return snapshot

    def start_activity(
        self, activity: Activity, duration_seconds: Optional[int] = None
    ) -> TimerSnapshot:
        """Start a tea/lunch break or the general count-up timer.

        A paused timer of the same activity is resumed instead. Anything else in
        progress is cancelled first. ``duration_seconds`` overrides the
        configured break length and is ignored by the count-up timer.
        """
        activity = Activity(activity)
        with self._lock:
            if self._activity is activity and self._open_session is not None:
                if self._state is ControllerState.RUNNING:
                    return self._snapshot_locked()
                self._resume_locked()
            else:
                if activity.counts_up:
                    total = 0
                else:
                    total = int(
                        duration_seconds or self.settings.duration_for_activity(activity)
                    )
                    if total <= 0:
                        raise ValueError("duration_seconds must be positive")
                self._cancel_open_session_locked()
                self._enter_idle_locked(self._mode)
                self._create_session_locked(activity.label, total)
                self._activity = activity
                self._total = total
                self._remaining = total
            self._state = ControllerState.RUNNING
            snapshot = self._snapshot_locked()
        logger.info("Running %s timer", activity.name)
        self._notify(snapshot)
        return snapshot

    def pause(self) -> TimerSnapshot:
        with self._lock:
            if self._state is not ControllerState.RUNNING:
                return self._snapshot_locked()
            session = self._open_session
            if session is not None:
                now = self.clock()
                self.dispatcher.submit(
                    "log pause", self.store.create_pause_log, session.id, now
                )
                self.dispatcher.submit(
                    "mark session paused",
                    self.store.update_session,
                    session.id,
                    is_paused=True,
                )
                session.is_paused = True
            self._state = ControllerState.PAUSED
            snapshot = self._snapshot_locked()
        logger.info("Paused %s with %ss left", self._mode.name, snapshot.remaining_seconds)
        self._notify(snapshot)
        return snapshot

    def tick(self) -> TimerSnapshot:
        """Advance the timer by one second; a countdown completes at zero."""
        with self._lock:
            if self._state is not ControllerState.RUNNING:
                return self._snapshot_locked()
            if self._counting_up_locked():
                self._counted_up += 1
                finished = False
            else:
                self._remaining = max(0, self._remaining - 1)
                finished = self._remaining == 0
            snapshot = self._snapshot_locked()
        if finished:
            return self.complete()
        self._notify(snapshot)
        return snapshot

    def complete(self) -> TimerSnapshot:
        """Record the current timer as finished and move on.

        Pomodoro countdowns advance to the next mode; activity timers return to
        the mode that was current before them.
        """
        with self._lock:
            if self._state is ControllerState.IDLE and self._open_session is None:
                return self._snapshot_locked()
            finished = self._mode
            activity = self._activity
            if self._open_session is not None:
                self._close_session_locked(self._open_session, completed=True)
            self._state = ControllerState.COMPLETED
            self._remaining = 0
            completed = self._snapshot_locked()
            if activity is not None:
                following = finished
                auto_start = False
            else:
                if finished is Mode.WORK:
                    self.completed_work_count += 1
                following = mode_after(
                    finished, self.completed_work_count, self.settings.long_break_every
                )
                auto_start = self.settings.auto_start_next
            self._enter_idle_locked(following)
            idle = self._snapshot_locked()
        logger.info(
            "Completed %s (work sessions this cycle: %d); next is %s",
            activity.name if activity else finished.name,
            self.completed_work_count,
            following.name,
        )
        self._notify(completed)
        self._notify(idle)
        if auto_start:
            try:
                return self.start()
            except SessionStartError:
                logger.warning("Could not auto-start %s; staying idle.", following.name)
        return self.snapshot()

    def reset(self) -> TimerSnapshot:
        """Cancel the running or paused timer and rewind the current mode."""
        with self._lock:
            if self._state not in (ControllerState.RUNNING, ControllerState.PAUSED):
                return self._snapshot_locked()
            self._cancel_open_session_locked()
            self._enter_idle_locked(self._mode)
            snapshot = self._snapshot_locked()
        self._notify(snapshot)
        return snapshot

    def switch_mode(self, mode: Mode) -> TimerSnapshot:
        """Switch to another mode, cancelling whatever is in progress."""
        with self._lock:
            self._cancel_open_session_locked()
            self._enter_idle_locked(Mode(mode))
            snapshot = self._snapshot_locked()
        logger.info("Switched to %s", snapshot.mode.name)
        self._notify(snapshot)
        return snapshot

    # ---------- Reconciliation hooks ----------
    def restore(
        self, session: Session, remaining_seconds: int, elapsed_seconds: int = 0
    ) -> TimerSnapshot:
        """Adopt an open session found in the store after a restart.

        ``elapsed_seconds`` is only used by the count-up timer.
        """
        with self._lock:
            activity = session.activity
            if activity is None:
                self._mode = session.mode
            self._activity = activity
            self._total = int(session.planned_duration_seconds)
            self._remaining = max(0, min(int(remaining_seconds), self._total))
            self._counted_up = max(0, int(elapsed_seconds))
            self._open_session = session
            self._state = (
                ControllerState.PAUSED if session.is_paused else ControllerState.RUNNING
            )
            snapshot = self._snapshot_locked()
        self._notify(snapshot)
        return snapshot

    def advance_after_elapsed(
        self, session: Session, completed_work_count: int, end_time: datetime
    ) -> TimerSnapshot:
        """Close a session whose countdown ran out while nobody was watching.

        ``completed_work_count`` must already include ``session`` when it was a
        work session. The next mode is left idle rather than auto-started.
        """
        with self._lock:
            self._close_session_locked(session, completed=True, end_time=end_time)
            self._open_session = None
            self.completed_work_count = completed_work_count
            if session.activity is not None:
                following = self._mode
            else:
                following = mode_after(
                    session.mode, completed_work_count, self.settings.long_break_every
                )
            self._enter_idle_locked(following)
            snapshot = self._snapshot_locked()
        self._notify(snapshot)
        return snapshot

    def close(self) -> None:
        """Flush pending persistence calls."""
        self.dispatcher.stop()

    # ---------- Internals ----------
    def _create_session_locked(self, label: str, planned_seconds: int) -> None:
        now = self.clock()
        # Queued closes must land before the one-open-session index sees a new row.
        self.dispatcher.join()
        try:
            try:
                session = self.store.create_session(self.user_id, label, planned_seconds, now)
            except OpenSessionExistsError:
                if not self._close_stale_session():
                    raise
                session = self.store.create_session(self.user_id, label, planned_seconds, now)
        except StoreError as exc:
            logger.error("Could not start %s session: %s", label, exc)
            self._report_error("create session", exc)
            raise SessionStartError(f"Failed to start {label} session") from exc
        self._open_session = session
        logger.info("Started %s session %s (%ss)", label, session.id, planned_seconds)

    def _close_stale_session(self) -> bool:
        """Close the store's open session if it is one that already finished.

        That is a session this controller closed locally but failed to persist,
        or a row already marked completed. Returns False when the open session
        is still live, e.g. started on another device.
        """
        stale = self.store.get_active_session(self.user_id)
        if stale is None:
            return True
        local = self._unsaved_closes.get(stale.id)
        if local is not None and local.end_time is not None:
            end_time, completed = local.end_time, local.is_completed
        elif stale.is_completed:
            end_time = stale.start_time + timedelta(seconds=stale.planned_duration_seconds)
            completed = True
        else:
            return False
        logger.warning("Closing session %s that was left open in the store", stale.id)
        self.store.update_session(stale.id, end_time=end_time, is_completed=completed)
        self._unsaved_closes.pop(stale.id, None)
        return True

    def _resume_locked(self) -> None:
        session = self._open_session
        if session is None or not session.is_paused:
            return
        now = self.clock()
        self.dispatcher.submit(
            "mark session resumed", self.store.update_session, session.id, is_paused=False
        )
        self.dispatcher.submit("log resume", self.store.record_resume, session.id, now)
        session.is_paused = False
        logger.info("Resumed %s session %s", session.label, session.id)

    def _close_session_locked(
        self,
        session: Session,
        *,
        completed: bool,
        end_time: Optional[datetime] = None,
    ) -> None:
        session.end_time = end_time or self.clock()
        session.is_completed = completed
        self._unsaved_closes[session.id] = session
        self.dispatcher.submit(
            "complete session" if completed else "cancel session",
            self._persist_close,
            session,
        )
        self._open_session = None

    def _persist_close(self, session: Session) -> None:
        # Runs on the dispatcher; must not take self._lock.
        self.store.update_session(
            session.id, end_time=session.end_time, is_completed=session.is_completed
        )
        self._unsaved_closes.pop(session.id, None)

    def _cancel_open_session_locked(self) -> None:
        if self._open_session is not None:
            logger.info("Cancelling session %s", self._open_session.id)
            self._close_session_locked(self._open_session, completed=False)

    def _enter_idle_locked(self, mode: Mode) -> None:
        self._mode = mode
        self._activity = None
        self._total = self.settings.duration_for(mode)
        self._remaining = self._total
        self._counted_up = 0
        self._state = ControllerState.IDLE

    def _counting_up_locked(self) -> bool:
        return self._activity is not None and self._activity.counts_up

    def _snapshot_locked(self) -> TimerSnapshot:
        if self._counting_up_locked():
            elapsed = self._counted_up
        else:
            elapsed = self._total - self._remaining
        return TimerSnapshot(
            mode=self._mode,
            state=self._state,
            remaining_seconds=self._remaining,
            total_seconds=self._total,
            session_id=self._open_session.id if self._open_session else None,
            completed_work_count=self.completed_work_count,
            activity=self._activity,
            elapsed_seconds=elapsed,
        )

    def _notify(self, snapshot: TimerSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Timer listener failed")

    def _report_error(self, description: str, exc: Exception) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(description, exc)
        except Exception:
            logger.exception("Error callback failed for %s", description)
