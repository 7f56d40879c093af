from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field


class LatchState(enum.Enum):
    IDLE = "idle"
    LATCHED = "latched"
    WAITING = "waiting"


@dataclass(frozen=True)
class SendWaitResult:
    triggered: bool


@dataclass
class _Waiter:
    event: threading.Event = field(default_factory=threading.Event)
    triggered: bool = False


class SendLatch:
    """Single-slot "send requested" signal with poll and blocking-wait consumers.

    States: IDLE (nothing pending), LATCHED (a send arrived with nobody
    waiting), WAITING (one caller is blocked in :meth:`wait`). A trigger
    during WAITING wakes that caller directly and leaves the latch IDLE.
    Only one waiter is tracked; a newer wait supersedes an older one, which
    then returns ``triggered=False``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = LatchState.IDLE
        self._waiter: _Waiter | None = None

    @property
    def state(self) -> LatchState:
        with self._lock:
            return self._state

    def trigger(self) -> bool:
        """Record a send; returns True when it woke an active waiter."""

        with self._lock:
            if self._state is LatchState.WAITING and self._waiter is not None:
                waiter = self._waiter
                waiter.triggered = True
                self._waiter = None
                self._state = LatchState.IDLE
                waiter.event.set()
                return True
            self._state = LatchState.LATCHED
            return False

    def consume(self) -> bool:
        with self._lock:
            if self._state is LatchState.LATCHED:
                self._state = LatchState.IDLE
                return True
            return False

    def wait(self, timeout_ms: float) -> SendWaitResult:
        with self._lock:
            if self._state is LatchState.LATCHED:
                self._state = LatchState.IDLE
                return SendWaitResult(triggered=True)
            previous = self._waiter
            waiter = _Waiter()
            self._waiter = waiter
            self._state = LatchState.WAITING
        if previous is not None:
            previous.event.set()

        waiter.event.wait(max(0.0, timeout_ms) / 1000.0)

        with self._lock:
            if self._waiter is waiter:
                self._waiter = None
                self._state = LatchState.IDLE
            return SendWaitResult(triggered=waiter.triggered)
