from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class DebouncedTask:
    """Run ``func`` once after ``delay_ms`` of quiet; re-arming restarts the wait."""

    def __init__(self, func: Callable[[], None], delay_ms: int) -> None:
        self._func = func
        self._delay_ms = delay_ms
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def arm(self) -> None:
        if self._delay_ms <= 0:
            self.flush()
            return
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            timer = threading.Timer(
                self._delay_ms / 1000.0, self._fire, args=(self._generation,)
            )
            timer.daemon = True
            self._timer = timer
            timer.start()

    def cancel(self) -> bool:
        with self._lock:
            timer = self._timer
            self._timer = None
            self._generation += 1
        if timer is None:
            return False
        timer.cancel()
        return True

    def flush(self) -> None:
        """Drop any pending timer and run the task now on the calling thread."""

        self.cancel()
        self._func()

    def _fire(self, generation: int) -> None:
        with self._lock:
            # A timer that was reset or cancelled after it started firing is stale.
            if generation != self._generation:
                return
            self._timer = None
        try:
            self._func()
        except Exception:
            logger.exception("debounced task failed")
