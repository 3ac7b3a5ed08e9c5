"""FastAPI application exposing the session store, the timer and statistics."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from .config import TimerSettings
from .controller import SessionController, SessionStartError
from .dispatch import InlineDispatcher, PersistenceDispatcher
from .models import Activity, Mode, PauseLog, Session, TimerSnapshot
from .paths import get_db_path
from .reconcile import reconcile
from .runner import TimerRunner
from .stats import WEEKDAY_NAMES, derive_stats
from .store import (
    OpenSessionExistsError,
    SessionNotFoundError,
    SessionStore,
    SqliteSessionStore,
    StoreError,
)

logger = logging.getLogger(__name__)


class TimerHub:
    """One controller (and ticker) per user, reconciled on first access."""

    def __init__(
        self,
        store: SessionStore,
        settings: TimerSettings,
        *,
        background: bool = True,
    ) -> None:
        self._store = store
        self._settings = settings
        self._background = background
        self._lock = threading.Lock()
        self._controllers: dict[str, SessionController] = {}
        self._runners: dict[str, TimerRunner] = {}

    def get(self, user_id: str) -> SessionController:
        with self._lock:
            controller = self._controllers.get(user_id)
            if controller is not None:
                return controller
            dispatcher = PersistenceDispatcher() if self._background else InlineDispatcher()
            controller = SessionController(
                self._store, user_id, self._settings, dispatcher=dispatcher
            )
            reconcile(controller)
            self._controllers[user_id] = controller
            if self._background:
                runner = TimerRunner(controller)
                runner.start()
                self._runners[user_id] = runner
            logger.info("Timer activated for %s", user_id)
            return controller

    def active_users(self) -> list[str]:
        with self._lock:
            return sorted(self._controllers)

    def stop_all(self) -> None:
        with self._lock:
            runners = list(self._runners.values())
            controllers = list(self._controllers.values())
            self._runners.clear()
            self._controllers.clear()
        for runner in runners:
            runner.stop()
        for controller in controllers:
            controller.close()


class CreateSessionPayload(BaseModel):
    label: str
    planned_duration_seconds: int = Field(ge=0)
    start_time: Optional[datetime] = None

    model_config = ConfigDict(extra="forbid")


class SessionUpdate(BaseModel):
    end_time: Optional[datetime] = None
    is_completed: Optional[bool] = None
    is_paused: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")


class PauseLogPayload(BaseModel):
    pause_time: Optional[datetime] = None

    model_config = ConfigDict(extra="forbid")


class ResumePayload(BaseModel):
    resume_time: Optional[datetime] = None

    model_config = ConfigDict(extra="forbid")


class ModePayload(BaseModel):
    mode: Mode

    model_config = ConfigDict(extra="forbid")


class ActivityPayload(BaseModel):
    activity: Activity
    duration_seconds: Optional[int] = Field(default=None, gt=0)

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    db_path: Optional[Path] = None,
    settings: Optional[TimerSettings] = None,
    background: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application.

    With ``background=False`` no ticker threads are started and persistence
    calls run inline, which keeps request handling deterministic.
    """
    resolved_db_path = Path(db_path or get_db_path())
    resolved_settings = settings or TimerSettings()
    store = SqliteSessionStore(resolved_db_path)
    hub = TimerHub(store, resolved_settings, background=background)

    app = FastAPI(title="Study Timer", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.db_path = resolved_db_path
    app.state.store = store
    app.state.timer_hub = hub

    @app.on_event("startup")
    async def _startup() -> None:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        hub.stop_all()

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        return {
            "database_path": str(request.app.state.db_path),
            "active_users": request.app.state.timer_hub.active_users(),
            "durations": {
                mode.value: resolved_settings.duration_for(mode) for mode in Mode
            },
            "long_break_every": resolved_settings.long_break_every,
        }

    # --- Session store ---

    @app.post("/api/sessions", status_code=201)
    def create_session(
        payload: CreateSessionPayload,
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        label = payload.label.strip()
        if not label:
            raise HTTPException(status_code=400, detail="label is required")
        try:
            session = store.create_session(
                uid,
                label,
                payload.planned_duration_seconds,
                _local_time(payload.start_time),
            )
        except OpenSessionExistsError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return _session_payload(session)

    @app.patch("/api/sessions/{session_id}")
    def update_session(
        session_id: str,
        payload: SessionUpdate,
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        _owned_session(store, session_id, uid)
        updates = payload.model_dump(exclude_unset=True)
        if updates.get("end_time") is not None:
            updates["end_time"] = _local_time(updates["end_time"])
        try:
            store.update_session(session_id, **updates)
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=404, detail="Session not found") from exc
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return _session_payload(_owned_session(store, session_id, uid))

    @app.post("/api/sessions/{session_id}/pause-logs", status_code=201)
    def create_pause_log(
        session_id: str,
        payload: PauseLogPayload,
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        _owned_session(store, session_id, uid)
        try:
            log = store.create_pause_log(session_id, _local_time(payload.pause_time))
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return _pause_log_payload(log)

    @app.post("/api/sessions/{session_id}/resume")
    def record_resume(
        session_id: str,
        payload: ResumePayload,
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        _owned_session(store, session_id, uid)
        try:
            store.record_resume(session_id, _local_time(payload.resume_time))
            logs = store.get_pause_logs(session_id)
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"pause_logs": [_pause_log_payload(log) for log in logs]}

    @app.get("/api/sessions/active")
    def active_session(
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        try:
            session = store.get_active_session(uid)
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"session": _session_payload(session) if session else None}

    @app.get("/api/sessions")
    def list_sessions(
        limit: int = Query(default=50, ge=1, le=1000),
        completed_only: bool = Query(default=False),
        label: Optional[str] = Query(default=None),
        start: Optional[datetime] = Query(default=None, description="Earliest start time."),
        end: Optional[datetime] = Query(default=None, description="Latest start time."),
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        try:
            sessions = store.get_sessions(
                uid,
                limit=limit,
                completed_only=completed_only,
                label=label,
                start=_local_time(start) if start else None,
                end=_local_time(end) if end else None,
            )
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"sessions": [_session_payload(s) for s in sessions]}

    @app.get("/api/sessions/{session_id}/pause-logs")
    def list_pause_logs(
        session_id: str,
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        _owned_session(store, session_id, uid)
        try:
            logs = store.get_pause_logs(session_id)
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"pause_logs": [_pause_log_payload(log) for log in logs]}

    # --- Statistics ---

    @app.get("/api/stats")
    def stats(
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        try:
            sessions = store.get_sessions(
                uid, limit=resolved_settings.history_limit, completed_only=True
            )
        except StoreError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        derived = derive_stats(sessions)
        return {
            "today_minutes": derived.today_minutes,
            "today_session_count": derived.today_session_count,
            "weekly_minutes": derived.weekly_minutes,
            "total_minutes": derived.total_minutes,
            "day_streak": derived.day_streak,
            "weekday_totals": [
                {"day": name, "minutes": minutes}
                for name, minutes in zip(WEEKDAY_NAMES, derived.weekday_totals)
            ],
            "activity_distribution": [
                {
                    "label": share.label,
                    "percentage": share.percentage,
                    "color": share.color,
                    "minutes": share.minutes,
                }
                for share in derived.activity_distribution
            ],
        }

    # --- Timer ---

    @app.get("/api/timer")
    def timer(
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        return _snapshot_payload(hub.get(uid).snapshot())

    @app.post("/api/timer/start")
    def timer_start(
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        try:
            snapshot = hub.get(uid).start()
        except SessionStartError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return _snapshot_payload(snapshot)

    @app.post("/api/timer/pause")
    def timer_pause(
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        return _snapshot_payload(hub.get(uid).pause())

    @app.post("/api/timer/resume")
    def timer_resume(
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        try:
            snapshot = hub.get(uid).resume()
        except SessionStartError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return _snapshot_payload(snapshot)

    @app.post("/api/timer/reset")
    def timer_reset(
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        return _snapshot_payload(hub.get(uid).reset())

    @app.post("/api/timer/mode")
    def timer_mode(
        payload: ModePayload,
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        return _snapshot_payload(hub.get(uid).switch_mode(payload.mode))

    @app.post("/api/timer/activity")
    def timer_activity(
        payload: ActivityPayload,
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        try:
            snapshot = hub.get(uid).start_activity(
                payload.activity, payload.duration_seconds
            )
        except SessionStartError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return _snapshot_payload(snapshot)

    @app.post("/api/timer/complete")
    def timer_complete(
        user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    ) -> Dict[str, Any]:
        uid = _require_user_id(user_id)
        return _snapshot_payload(hub.get(uid).complete())

    return app


def _require_user_id(user_id: Optional[str]) -> str:
    if not user_id:
        raise HTTPException(status_code=400, detail="Missing X-User-Id header")
    return user_id


def _owned_session(store: SessionStore, session_id: str, user_id: str) -> Session:
    try:
        session = store.get_session(session_id)
    except StoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    if session is None or session.user_id != user_id:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _session_payload(session: Session) -> Dict[str, Any]:
    return {
        "id": session.id,
        "user_id": session.user_id,
        "label": session.label,
        "planned_duration_seconds": session.planned_duration_seconds,
        "start_time": session.start_time.isoformat(),
        "end_time": session.end_time.isoformat() if session.end_time else None,
        "is_completed": session.is_completed,
        "is_paused": session.is_paused,
        "elapsed_seconds": session.elapsed_seconds,
    }


def _pause_log_payload(log: PauseLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "session_id": log.session_id,
        "pause_time": log.pause_time.isoformat(),
        "resume_time": log.resume_time.isoformat() if log.resume_time else None,
    }


def _snapshot_payload(snapshot: TimerSnapshot) -> Dict[str, Any]:
    return {
        "mode": snapshot.mode.value,
        "state": snapshot.state.value,
        "remaining_seconds": snapshot.remaining_seconds,
        "total_seconds": snapshot.total_seconds,
        "session_id": snapshot.session_id,
        "completed_work_count": snapshot.completed_work_count,
        "activity": snapshot.activity.value if snapshot.activity else None,
        "elapsed_seconds": snapshot.elapsed_seconds,
    }


def _local_time(value: Optional[datetime]) -> datetime:
    """Naive local time, as stored; aware values are converted, None means now."""
    if value is None:
        return datetime.now()
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value
