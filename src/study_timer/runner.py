"""Background ticker driving the countdown."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .controller import SessionController

logger = logging.getLogger(__name__)


class TimerRunner:
    """Call ``controller.tick()`` at a fixed interval on a daemon thread."""

    def __init__(self, controller: SessionController, interval: Optional[float] = None) -> None:
        self._controller = controller
        self._interval = (
            interval
            if interval is not None
            else controller.settings.tick_interval.total_seconds()
        )
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run_loop,
                args=(stop_event,),
                name=f"timer-{self._controller.user_id}",
                daemon=True,
            )
            self._thread = thread
            self._stop_event = stop_event
            thread.start()
            logger.debug("Ticker started for %s.", self._controller.user_id)

    def stop(self) -> None:
        thread: Optional[threading.Thread] = None
        with self._lock:
            if not self._thread or not self._thread.is_alive() or not self._stop_event:
                return
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            self._stop_event = None
        if thread and thread is not threading.current_thread():
            thread.join(timeout=10)
            logger.debug("Ticker stopped for %s.", self._controller.user_id)

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    def _run_loop(self, stop_event: threading.Event) -> None:
        # Sleep in an interruptible manner.
        while not stop_event.wait(self._interval):
            try:
                self._controller.tick()
            except Exception:
                logger.exception("Timer tick failed")
