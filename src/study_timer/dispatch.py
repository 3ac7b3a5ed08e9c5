"""Fire-and-forget execution of persistence calls."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str, Exception], None]


class InlineDispatcher:
    """Run persistence calls immediately on the caller's thread.

    Failures are reported exactly like the background dispatcher reports them,
    and never propagate to the caller.
    """

    def __init__(self, on_error: Optional[ErrorCallback] = None) -> None:
        self.on_error = on_error

    def submit(
        self, description: str, fn: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> None:
        _run_reporting_failure(description, fn, args, kwargs, self.on_error)

    def start(self) -> None:
        pass

    def stop(self, timeout: float = 10.0) -> None:
        pass

    def join(self) -> None:
        pass


class PersistenceDispatcher:
    """Run persistence calls on a single background worker, in submission order."""

    def __init__(self, on_error: Optional[ErrorCallback] = None) -> None:
        self.on_error = on_error
        self._queue: "queue.Queue[Optional[tuple]]" = queue.Queue()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            thread = threading.Thread(
                target=self._worker, name="persistence-dispatcher", daemon=True
            )
            self._thread = thread
            thread.start()
            logger.debug("Persistence dispatcher started.")

    def submit(
        self, description: str, fn: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> None:
        self.start()
        self._queue.put((description, fn, args, kwargs))

    def join(self) -> None:
        """Block until every submitted call has been attempted."""
        if not self._queue.empty():
            self.start()
        self._queue.join()

    def stop(self, timeout: float = 10.0) -> None:
        thread: Optional[threading.Thread] = None
        with self._lock:
            if not self._thread or not self._thread.is_alive():
                return
            thread = self._thread
            self._thread = None
        self._queue.put(None)
        thread.join(timeout=timeout)
        logger.debug("Persistence dispatcher stopped.")

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                description, fn, args, kwargs = item
                _run_reporting_failure(description, fn, args, kwargs, self.on_error)
            finally:
                self._queue.task_done()


def _run_reporting_failure(
    description: str,
    fn: Callable[..., Any],
    args: tuple,
    kwargs: dict,
    on_error: Optional[ErrorCallback],
) -> None:
    try:
        fn(*args, **kwargs)
    except Exception as exc:
        logger.error("Persistence call failed (%s): %s", description, exc)
        if on_error is None:
            return
        try:
            on_error(description, exc)
        except Exception:
            logger.exception("Error callback failed for %s", description)
