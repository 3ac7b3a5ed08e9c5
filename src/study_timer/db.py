"""SQLite database layer for timer sessions and pause logs."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional


DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"


def open_database(path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    enable_foreign_keys(conn)
    initialize_schema(conn)
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


def enable_foreign_keys(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS timer_sessions (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            label TEXT NOT NULL,
            planned_duration_seconds INTEGER NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT,
            is_completed INTEGER NOT NULL DEFAULT 0,
            is_paused INTEGER NOT NULL DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_sessions_user_start
            ON timer_sessions(user_id, start_time);

        -- One open session per user.
        CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_one_open
            ON timer_sessions(user_id) WHERE end_time IS NULL;

        CREATE TABLE IF NOT EXISTS timer_pause_logs (
            id INTEGER PRIMARY KEY,
            session_id TEXT NOT NULL REFERENCES timer_sessions(id),
            pause_time TEXT NOT NULL,
            resume_time TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_pause_logs_session
            ON timer_pause_logs(session_id);
        """
    )


def format_timestamp(value: datetime) -> str:
    return value.strftime(DATETIME_FMT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.strptime(value, DATETIME_FMT)


def insert_session(
    conn: sqlite3.Connection,
    session_id: str,
    user_id: str,
    label: str,
    planned_duration_seconds: int,
    start_time: datetime,
) -> None:
    """Insert a new open session. Raises sqlite3.IntegrityError if one is already open."""
    conn.execute(
        """
        INSERT INTO timer_sessions (
            id,
            user_id,
            label,
            planned_duration_seconds,
            start_time,
            is_completed,
            is_paused
        ) VALUES (?, ?, ?, ?, ?, 0, 0)
        """,
        (
            session_id,
            user_id,
            label,
            int(planned_duration_seconds),
            format_timestamp(start_time),
        ),
    )


def update_session(
    conn: sqlite3.Connection,
    session_id: str,
    *,
    end_time: Optional[datetime] = None,
    is_completed: Optional[bool] = None,
    is_paused: Optional[bool] = None,
) -> None:
    """Update a single session record."""
    fields: list[str] = []
    params: list[object] = []

    if end_time is not None:
        fields.append("end_time = ?")
        params.append(format_timestamp(end_time))
    if is_completed is not None:
        fields.append("is_completed = ?")
        params.append(1 if is_completed else 0)
    if is_paused is not None:
        fields.append("is_paused = ?")
        params.append(1 if is_paused else 0)

    if not fields:
        return

    params.append(session_id)
    cur = conn.execute(
        f"UPDATE timer_sessions SET {', '.join(fields)} WHERE id = ?",
        params,
    )
    if cur.rowcount == 0:
        raise ValueError(f"No session found for id={session_id}")


def fetch_session(conn: sqlite3.Connection, session_id: str) -> Optional[sqlite3.Row]:
    return conn.execute(
        "SELECT * FROM timer_sessions WHERE id = ?",
        (session_id,),
    ).fetchone()


def fetch_active_session(
    conn: sqlite3.Connection, user_id: str
) -> Optional[sqlite3.Row]:
    """Return the user's open session (no end time), if any."""
    return conn.execute(
        """
        SELECT *
        FROM timer_sessions
        WHERE user_id = ? AND end_time IS NULL
        ORDER BY start_time DESC
        LIMIT 1;
        """,
        (user_id,),
    ).fetchone()


def fetch_sessions(
    conn: sqlite3.Connection,
    user_id: str,
    *,
    limit: int = 50,
    completed_only: bool = False,
    label: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> list[sqlite3.Row]:
    """Fetch a user's sessions, most recent first."""
    clauses = ["user_id = ?"]
    params: list[object] = [user_id]
    if completed_only:
        clauses.append("is_completed = 1")
    if label is not None:
        clauses.append("label = ?")
        params.append(label)
    if start is not None:
        clauses.append("start_time >= ?")
        params.append(format_timestamp(start))
    if end is not None:
        clauses.append("start_time <= ?")
        params.append(format_timestamp(end))
    params.append(int(limit))
    return list(
        conn.execute(
            f"""
            SELECT *
            FROM timer_sessions
            WHERE {' AND '.join(clauses)}
            ORDER BY start_time DESC
            LIMIT ?;
            """,
            params,
        )
    )


def insert_pause_log(
    conn: sqlite3.Connection, session_id: str, pause_time: datetime
) -> int:
    cur = conn.execute(
        "INSERT INTO timer_pause_logs (session_id, pause_time) VALUES (?, ?)",
        (session_id, format_timestamp(pause_time)),
    )
    return int(cur.lastrowid)


def close_pause_log(
    conn: sqlite3.Connection, session_id: str, resume_time: datetime
) -> bool:
    """Stamp the latest unresumed pause of a session. Returns False if none was open."""
    cur = conn.execute(
        """
        UPDATE timer_pause_logs
        SET resume_time = ?
        WHERE id = (
            SELECT id
            FROM timer_pause_logs
            WHERE session_id = ? AND resume_time IS NULL
            ORDER BY pause_time DESC, id DESC
            LIMIT 1
        )
        """,
        (format_timestamp(resume_time), session_id),
    )
    return cur.rowcount > 0


def fetch_pause_logs(conn: sqlite3.Connection, session_id: str) -> list[sqlite3.Row]:
    return list(
        conn.execute(
            """
            SELECT id, session_id, pause_time, resume_time
            FROM timer_pause_logs
            WHERE session_id = ?
            ORDER BY pause_time, id;
            """,
            (session_id,),
        )
    )
