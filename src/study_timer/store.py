"""Session store contract and its SQLite implementation."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from . import db
from .models import PauseLog, Session

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """A persistence call failed."""


class SessionNotFoundError(StoreError):
    pass


class OpenSessionExistsError(StoreError):
    """The user already has a session without an end time."""


class SessionStore(ABC):
    """Operations the timer needs from its persistence collaborator."""

    @abstractmethod
    def create_session(
        self,
        user_id: str,
        label: str,
        planned_duration_seconds: int,
        start_time: datetime,
    ) -> Session: ...

    @abstractmethod
    def update_session(
        self,
        session_id: str,
        *,
        end_time: Optional[datetime] = None,
        is_completed: Optional[bool] = None,
        is_paused: Optional[bool] = None,
    ) -> None: ...

    @abstractmethod
    def create_pause_log(self, session_id: str, pause_time: datetime) -> PauseLog: ...

    @abstractmethod
    def record_resume(self, session_id: str, resume_time: datetime) -> None: ...

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[Session]: ...

    @abstractmethod
    def get_active_session(self, user_id: str) -> Optional[Session]: ...

    @abstractmethod
    def get_sessions(
        self,
        user_id: str,
        *,
        limit: int = 50,
        completed_only: bool = False,
        label: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Session]: ...

    @abstractmethod
    def get_pause_logs(self, session_id: str) -> list[PauseLog]: ...


class SqliteSessionStore(SessionStore):
    """Session store backed by a local SQLite file.

    Every call opens its own connection, so the store can be shared between
    the ticker thread, the persistence worker and web request handlers.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def create_session(
        self,
        user_id: str,
        label: str,
        planned_duration_seconds: int,
        start_time: datetime,
    ) -> Session:
        session_id = str(uuid.uuid4())
        try:
            with db.database_connection(self.db_path) as conn:
                db.insert_session(
                    conn,
                    session_id,
                    user_id,
                    label,
                    planned_duration_seconds,
                    start_time,
                )
        except sqlite3.IntegrityError as exc:
            raise OpenSessionExistsError(
                f"User {user_id!r} already has an open session"
            ) from exc
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to create session: {exc}") from exc
        logger.debug("Created session %s (%s) for %s", session_id, label, user_id)
        return Session(
            id=session_id,
            user_id=user_id,
            label=label,
            planned_duration_seconds=int(planned_duration_seconds),
            start_time=start_time,
        )

    def update_session(
        self,
        session_id: str,
        *,
        end_time: Optional[datetime] = None,
        is_completed: Optional[bool] = None,
        is_paused: Optional[bool] = None,
    ) -> None:
        try:
            with db.database_connection(self.db_path) as conn:
                db.update_session(
                    conn,
                    session_id,
                    end_time=end_time,
                    is_completed=is_completed,
                    is_paused=is_paused,
                )
        except ValueError as exc:
            raise SessionNotFoundError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to update session {session_id}: {exc}") from exc

    def create_pause_log(self, session_id: str, pause_time: datetime) -> PauseLog:
        try:
            with db.database_connection(self.db_path) as conn:
                if db.fetch_session(conn, session_id) is None:
                    raise SessionNotFoundError(f"No session found for id={session_id}")
                log_id = db.insert_pause_log(conn, session_id, pause_time)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to log pause for {session_id}: {exc}") from exc
        return PauseLog(id=log_id, session_id=session_id, pause_time=pause_time)

    def record_resume(self, session_id: str, resume_time: datetime) -> None:
        try:
            with db.database_connection(self.db_path) as conn:
                closed = db.close_pause_log(conn, session_id, resume_time)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to log resume for {session_id}: {exc}") from exc
        if not closed:
            logger.debug("No open pause to close for session %s", session_id)

    def get_session(self, session_id: str) -> Optional[Session]:
        try:
            with db.database_connection(self.db_path) as conn:
                row = db.fetch_session(conn, session_id)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to fetch session {session_id}: {exc}") from exc
        return _row_to_session(row) if row is not None else None

    def get_active_session(self, user_id: str) -> Optional[Session]:
        try:
            with db.database_connection(self.db_path) as conn:
                row = db.fetch_active_session(conn, user_id)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to fetch active session: {exc}") from exc
        return _row_to_session(row) if row is not None else None

    def get_sessions(
        self,
        user_id: str,
        *,
        limit: int = 50,
        completed_only: bool = False,
        label: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Session]:
        try:
            with db.database_connection(self.db_path) as conn:
                rows = db.fetch_sessions(
                    conn,
                    user_id,
                    limit=limit,
                    completed_only=completed_only,
                    label=label,
                    start=start,
                    end=end,
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to fetch sessions: {exc}") from exc
        return [_row_to_session(row) for row in rows]

    def get_pause_logs(self, session_id: str) -> list[PauseLog]:
        try:
            with db.database_connection(self.db_path) as conn:
                rows = db.fetch_pause_logs(conn, session_id)
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to fetch pause logs: {exc}") from exc
        return [
            PauseLog(
                id=row["id"],
                session_id=row["session_id"],
                pause_time=db.parse_timestamp(row["pause_time"]),
                resume_time=db.parse_timestamp(row["resume_time"]),
            )
            for row in rows
        ]


def _row_to_session(row: Any) -> Session:
    return Session(
        id=row["id"],
        user_id=row["user_id"],
        label=row["label"],
        planned_duration_seconds=int(row["planned_duration_seconds"]),
        start_time=db.parse_timestamp(row["start_time"]),
        end_time=db.parse_timestamp(row["end_time"]),
        is_completed=bool(row["is_completed"]),
        is_paused=bool(row["is_paused"]),
    )
