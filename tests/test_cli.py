from datetime import datetime, timedelta

from typer.testing import CliRunner

from study_timer.cli import app
from study_timer.store import SqliteSessionStore

runner = CliRunner()


def _invoke(db_path, *args):
    return runner.invoke(app, [*args, "--db", str(db_path), "--user", "cli-user"])


def test_status_on_empty_database(db_path):
    result = _invoke(db_path, "status")

    assert result.exit_code == 0, result.output
    assert "Work: 25:00 [idle]" in result.output


def test_switch_mode(db_path):
    result = _invoke(db_path, "switch", "break-short")

    assert result.exit_code == 0, result.output
    assert "Short Break: 05:00 [idle]" in result.output


def test_status_restores_open_session(db_path):
    store = SqliteSessionStore(db_path)
    store.create_session("cli-user", "break-long", 900, datetime.now() - timedelta(seconds=30))

    result = _invoke(db_path, "status")

    assert result.exit_code == 0, result.output
    assert "Long Break: 14:" in result.output
    assert "[running]" in result.output


def test_pause_and_reset_open_session(db_path):
    store = SqliteSessionStore(db_path)
    session = store.create_session("cli-user", "focus", 1500, datetime.now())

    paused = _invoke(db_path, "pause")
    assert paused.exit_code == 0, paused.output
    assert "[paused]" in paused.output
    assert store.get_session(session.id).is_paused
    assert len(store.get_pause_logs(session.id)) == 1

    reset = _invoke(db_path, "reset")
    assert reset.exit_code == 0, reset.output
    cancelled = store.get_session(session.id)
    assert cancelled.end_time is not None
    assert not cancelled.is_completed


def test_pause_with_nothing_running(db_path):
    result = _invoke(db_path, "pause")

    assert result.exit_code == 0
    assert "Nothing is running." in result.output


def test_stats_and_history(db_path):
    store = SqliteSessionStore(db_path)
    start = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
    session = store.create_session("cli-user", "focus", 1500, start)
    store.update_session(session.id, end_time=start + timedelta(minutes=25), is_completed=True)

    stats = _invoke(db_path, "stats")
    assert stats.exit_code == 0, stats.output
    assert "Day streak: 1" in stats.output
    assert "focus" in stats.output
    assert "100%" in stats.output

    history = _invoke(db_path, "history")
    assert history.exit_code == 0, history.output
    assert "1 sessions, 00:25:00 in total" in history.output
    assert "Today" in history.output


def test_stats_without_sessions(db_path):
    result = _invoke(db_path, "stats")

    assert result.exit_code == 0
    assert "No completed sessions yet" in result.output


def test_duration_options_apply_to_one_shot_commands(db_path):
    store = SqliteSessionStore(db_path)
    session = store.create_session("cli-user", "focus", 3000, datetime.now())

    result = _invoke(db_path, "reset", "--work", "50")

    assert result.exit_code == 0, result.output
    assert "Work: 50:00 [idle]" in result.output
    assert store.get_session(session.id).end_time is not None


def test_status_shows_general_timer_elapsed(db_path):
    store = SqliteSessionStore(db_path)
    store.create_session("cli-user", "general-timer", 0, datetime.now() - timedelta(seconds=90))

    result = _invoke(db_path, "status")

    assert result.exit_code == 0, result.output
    assert "General: 01:3" in result.output
    assert "[running]" in result.output


def test_stop_records_general_timer_as_completed(db_path):
    store = SqliteSessionStore(db_path)
    session = store.create_session(
        "cli-user", "general-timer", 0, datetime.now() - timedelta(minutes=20)
    )

    result = _invoke(db_path, "stop")

    assert result.exit_code == 0, result.output
    stopped = store.get_session(session.id)
    assert stopped.is_completed
    assert stopped.elapsed_seconds >= 20 * 60
    assert store.get_active_session("cli-user") is None


def test_stop_with_nothing_running(db_path):
    result = _invoke(db_path, "stop")

    assert result.exit_code == 0
    assert "Nothing is running." in result.output


def test_run_rejects_unknown_activity(db_path):
    result = _invoke(db_path, "run", "--activity", "nap")

    assert result.exit_code == 2
