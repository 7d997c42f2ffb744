"""
In-memory resend counter store - Implements ResendCounterStore protocol.

Process-local: limits hold per application instance only, and a
restart resets every counter. Use the Redis store when several
instances serve the same users.
"""

import threading
from datetime import datetime, timedelta

from src.domain.ports import WindowCounter


class InMemoryResendCounterStore:
    """
    Fixed-window counters in a dict, purged lazily.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self) -> None:
        self._counters: dict[str, WindowCounter] = {}
        self._lock = threading.Lock()

    def get(self, key: str, now: datetime) -> WindowCounter | None:
        with self._lock:
            counter = self._counters.get(key)
            if counter is not None and now >= counter.reset_at:
                del self._counters[key]
                return None
            return counter

    def increment(self, key: str, window_seconds: int, now: datetime) -> WindowCounter:
        with self._lock:
            self._purge_elapsed(now)
            current = self._counters.get(key)
            if current is None:
                counter = WindowCounter(count=1, reset_at=now + timedelta(seconds=window_seconds))
            else:
                counter = WindowCounter(count=current.count + 1, reset_at=current.reset_at)
            self._counters[key] = counter
            return counter

    def __len__(self) -> int:
        return len(self._counters)

    def _purge_elapsed(self, now: datetime) -> None:
        expired = [key for key, counter in self._counters.items() if now >= counter.reset_at]
        for key in expired:
            del self._counters[key]
