"""Command-line interface for the study timer."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

import typer

from .config import TimerSettings
from .controller import SessionController, SessionStartError
from .dispatch import InlineDispatcher
from .models import Activity, ControllerState, Mode, TimerSnapshot
from .paths import get_db_path
from .reconcile import ReconcileOutcome, reconcile
from .reporting import StatsPrinter, describe_snapshot
from .runner import TimerRunner
from .server_runner import run_dashboard
from .store import SqliteSessionStore

app = typer.Typer(help="Pomodoro-style study timer with session statistics.")

# Shared by every command that drives the timer, so reconciliation and resets
# see the same durations as the `run` that created the sessions.
USER_OPTION = typer.Option(
    "local", "--user", "-u", envvar="STUDY_TIMER_USER", help="User the sessions belong to."
)
DB_OPTION = typer.Option(
    None,
    "--db",
    envvar="STUDY_TIMER_DB",
    path_type=Path,
    help="Location of the sessions SQLite database.",
)
WORK_OPTION = typer.Option(
    25.0, "--work", min=1.0, envvar="STUDY_TIMER_WORK", help="Work session length in minutes."
)
SHORT_BREAK_OPTION = typer.Option(
    5.0,
    "--short-break",
    min=1.0,
    envvar="STUDY_TIMER_SHORT_BREAK",
    help="Short break length in minutes.",
)
LONG_BREAK_OPTION = typer.Option(
    15.0,
    "--long-break",
    min=1.0,
    envvar="STUDY_TIMER_LONG_BREAK",
    help="Long break length in minutes.",
)
LONG_BREAK_EVERY_OPTION = typer.Option(
    4,
    "--long-break-every",
    min=1,
    envvar="STUDY_TIMER_LONG_BREAK_EVERY",
    help="Work sessions per long break.",
)


@app.callback(no_args_is_help=True)
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@app.command()
def run(
    user: str = USER_OPTION,
    db_path: Optional[Path] = DB_OPTION,
    work_minutes: float = WORK_OPTION,
    short_break_minutes: float = SHORT_BREAK_OPTION,
    long_break_minutes: float = LONG_BREAK_OPTION,
    long_break_every: int = LONG_BREAK_EVERY_OPTION,
    auto_start: bool = typer.Option(
        True,
        "--auto-start/--no-auto-start",
        help="Start the next countdown automatically when one finishes.",
    ),
    activity_name: Optional[str] = typer.Option(
        None,
        "--activity",
        help="Run a tea, lunch or general (count-up) timer instead of the pomodoro cycle.",
    ),
    activity_minutes: Optional[float] = typer.Option(
        None, "--minutes", min=1.0, help="Length of a tea or lunch break in minutes."
    ),
) -> None:
    """Run the timer in the foreground. Ctrl-C pauses it; run again to resume."""
    activity = _parse_activity(activity_name)
    settings = TimerSettings.from_minutes(
        work_minutes, short_break_minutes, long_break_minutes, long_break_every, auto_start
    )
    store = SqliteSessionStore(db_path or get_db_path())
    controller = SessionController(store, user, settings, on_error=_echo_error)
    outcome = reconcile(controller)
    if outcome is ReconcileOutcome.COMPLETED:
        typer.echo("Your last session finished while the timer was closed.")

    try:
        if activity is not None:
            duration = int(activity_minutes * 60) if activity_minutes else None
            controller.start_activity(activity, duration)
        elif controller.state is ControllerState.PAUSED:
            controller.resume()
        elif controller.state is ControllerState.IDLE:
            controller.start()
    except SessionStartError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        controller.close()
        raise typer.Exit(code=1) from exc

    # Activity timers stop when they finish; the pomodoro cycle keeps going.
    keep_cycling = settings.auto_start_next and controller.activity is None
    controller.add_listener(_render)
    runner = TimerRunner(controller)
    runner.start()
    try:
        while keep_cycling or controller.state is not ControllerState.IDLE:
            time.sleep(0.25)
    except KeyboardInterrupt:
        controller.pause()
        typer.echo()
        typer.echo("Paused. Run again to resume.")
    finally:
        runner.stop()
        controller.close()


@app.command()
def status(
    user: str = USER_OPTION,
    db_path: Optional[Path] = DB_OPTION,
    work_minutes: float = WORK_OPTION,
    short_break_minutes: float = SHORT_BREAK_OPTION,
    long_break_minutes: float = LONG_BREAK_OPTION,
    long_break_every: int = LONG_BREAK_EVERY_OPTION,
) -> None:
    """Show the current timer."""
    controller = _one_shot_controller(
        user, db_path, work_minutes, short_break_minutes, long_break_minutes, long_break_every
    )
    reconcile(controller)
    typer.echo(describe_snapshot(controller.snapshot()))


@app.command()
def pause(
    user: str = USER_OPTION,
    db_path: Optional[Path] = DB_OPTION,
    work_minutes: float = WORK_OPTION,
    short_break_minutes: float = SHORT_BREAK_OPTION,
    long_break_minutes: float = LONG_BREAK_OPTION,
    long_break_every: int = LONG_BREAK_EVERY_OPTION,
) -> None:
    """Pause the running session."""
    controller = _one_shot_controller(
        user, db_path, work_minutes, short_break_minutes, long_break_minutes, long_break_every
    )
    reconcile(controller)
    if controller.state is not ControllerState.RUNNING:
        typer.echo("Nothing is running.")
        return
    typer.echo(describe_snapshot(controller.pause()))


@app.command()
def stop(
    user: str = USER_OPTION,
    db_path: Optional[Path] = DB_OPTION,
    work_minutes: float = WORK_OPTION,
    short_break_minutes: float = SHORT_BREAK_OPTION,
    long_break_minutes: float = LONG_BREAK_OPTION,
    long_break_every: int = LONG_BREAK_EVERY_OPTION,
) -> None:
    """Finish the current timer now and record it as completed."""
    controller = _one_shot_controller(
        user, db_path, work_minutes, short_break_minutes, long_break_minutes, long_break_every
    )
    reconcile(controller)
    if controller.open_session is None:
        typer.echo("Nothing is running.")
        return
    typer.echo(describe_snapshot(controller.complete()))


@app.command()
def reset(
    user: str = USER_OPTION,
    db_path: Optional[Path] = DB_OPTION,
    work_minutes: float = WORK_OPTION,
    short_break_minutes: float = SHORT_BREAK_OPTION,
    long_break_minutes: float = LONG_BREAK_OPTION,
    long_break_every: int = LONG_BREAK_EVERY_OPTION,
) -> None:
    """Cancel the running or paused session."""
    controller = _one_shot_controller(
        user, db_path, work_minutes, short_break_minutes, long_break_minutes, long_break_every
    )
    reconcile(controller)
    typer.echo(describe_snapshot(controller.reset()))


@app.command()
def switch(
    mode: Mode = typer.Argument(..., help="Mode to switch to."),
    user: str = USER_OPTION,
    db_path: Optional[Path] = DB_OPTION,
    work_minutes: float = WORK_OPTION,
    short_break_minutes: float = SHORT_BREAK_OPTION,
    long_break_minutes: float = LONG_BREAK_OPTION,
    long_break_every: int = LONG_BREAK_EVERY_OPTION,
) -> None:
    """Switch mode, cancelling any session in progress."""
    controller = _one_shot_controller(
        user, db_path, work_minutes, short_break_minutes, long_break_minutes, long_break_every
    )
    reconcile(controller)
    typer.echo(describe_snapshot(controller.switch_mode(mode)))


@app.command()
def stats(
    user: str = USER_OPTION,
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Print today's and this week's totals, the day streak and time distribution."""
    printer = StatsPrinter(SqliteSessionStore(db_path or get_db_path()), user)
    printer.print_stats()


@app.command()
def history(
    label: Optional[str] = typer.Option(
        None, "--label", help="Only show sessions with this label."
    ),
    limit: int = typer.Option(100, "--limit", min=1, help="Maximum number of sessions."),
    user: str = USER_OPTION,
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """List completed sessions grouped by day."""
    printer = StatsPrinter(SqliteSessionStore(db_path or get_db_path()), user)
    printer.print_history(label=label, limit=limit)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the dashboard."),
    port: int = typer.Option(
        8766, "--port", min=1, max=65535, help="TCP port for the dashboard."
    ),
    db_path: Optional[Path] = DB_OPTION,
    work_minutes: float = WORK_OPTION,
    short_break_minutes: float = SHORT_BREAK_OPTION,
    long_break_minutes: float = LONG_BREAK_OPTION,
    long_break_every: int = LONG_BREAK_EVERY_OPTION,
    open_browser: bool = typer.Option(
        False,
        "--open-browser/--no-open-browser",
        help="Open the API docs in your default browser.",
    ),
) -> None:
    """Serve the timer and statistics API."""
    settings = TimerSettings.from_minutes(
        work_minutes, short_break_minutes, long_break_minutes, long_break_every
    )
    run_dashboard(
        host=host,
        port=port,
        db_path=db_path or get_db_path(),
        settings=settings,
        open_browser=open_browser,
    )


def _one_shot_controller(
    user: str,
    db_path: Optional[Path],
    work_minutes: float,
    short_break_minutes: float,
    long_break_minutes: float,
    long_break_every: int,
) -> SessionController:
    # One-shot commands never start the next countdown on their own.
    settings = TimerSettings.from_minutes(
        work_minutes,
        short_break_minutes,
        long_break_minutes,
        long_break_every,
        auto_start_next=False,
    )
    store = SqliteSessionStore(db_path or get_db_path())
    return SessionController(
        store, user, settings, dispatcher=InlineDispatcher(), on_error=_echo_error
    )


def _parse_activity(value: Optional[str]) -> Optional[Activity]:
    if value is None:
        return None
    try:
        return Activity.parse(value)
    except ValueError as exc:
        raise typer.BadParameter(
            "expected one of: general, tea, lunch", param_hint="--activity"
        ) from exc


def _render(snapshot: TimerSnapshot) -> None:
    typer.echo(f"\r{describe_snapshot(snapshot):<40}", nl=False)


def _echo_error(description: str, exc: Exception) -> None:
    typer.secho(f"\nCould not {description}: {exc}", fg=typer.colors.YELLOW, err=True)
