"""Rate-limited single-flight gate."""

from typing import Callable
import threading
import time


class RefreshGate:
    """Allows at most one in-flight operation, then enforces a cooldown.

    ``try_acquire`` succeeds only when nothing is running and the cooldown
    started by the last ``release`` has elapsed. Callers that fail to
    acquire are dropped, never queued.
    """

    def __init__(self, min_interval: float, clock: Callable[[], float] = time.monotonic):
        self.min_interval = min_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight = False
        self._ready_at = 0.0

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._in_flight

    def try_acquire(self) -> bool:
        with self._lock:
            if self._in_flight or self._clock() < self._ready_at:
                return False
            self._in_flight = True
            return True

    def release(self) -> None:
        """Finish the in-flight operation and start the cooldown."""
        with self._lock:
            self._in_flight = False
            self._ready_at = self._clock() + self.min_interval
