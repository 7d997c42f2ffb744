"""
Resend throttle - fixed-window limits on verification email resends.

Keyed by normalized email, whether or not an account exists, so the
throttle itself reveals nothing about registration. Two windows apply
independently: 3 per hour and 10 per day. A rejected request does not
consume either window.
"""

import math
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from .ports import ResendCounterStore, WindowCounter

HOUR_SECONDS = 60 * 60
DAY_SECONDS = 24 * HOUR_SECONDS

RESEND_HOURLY_LIMIT = 3
RESEND_DAILY_LIMIT = 10


@dataclass(frozen=True)
class ThrottleDecision:
    """Outcome of a resend throttle check."""

    allowed: bool
    message: str
    retry_after_seconds: int | None = None


@dataclass(frozen=True)
class ResendWindow:
    """One fixed window: at most `limit` hits per `seconds`."""

    name: str
    seconds: int
    limit: int
    rejection_message: Callable[[int], str]


def _hourly_message(retry_after: int) -> str:
    return f"Too many resend attempts. Try again in {math.ceil(retry_after / 60)} minutes."


def _daily_message(retry_after: int) -> str:
    return "Daily resend limit exceeded. Try again tomorrow."


@dataclass
class ResendThrottle:
    """
    Two-window resend limiter over a ResendCounterStore.

    Windows are checked in order (hourly before daily); the first one at
    its ceiling decides the retry hint.
    """

    store: ResendCounterStore
    hourly_limit: int = RESEND_HOURLY_LIMIT
    daily_limit: int = RESEND_DAILY_LIMIT
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def windows(self) -> tuple[ResendWindow, ...]:
        return (
            ResendWindow("hour", HOUR_SECONDS, self.hourly_limit, _hourly_message),
            ResendWindow("day", DAY_SECONDS, self.daily_limit, _daily_message),
        )

    def check(self, email: str, now: datetime) -> ThrottleDecision:
        """
        Check both windows for `email` and count the request if allowed.

        Args:
            email: Normalized email address
            now: Current time

        Returns:
            ThrottleDecision; `retry_after_seconds` is set on rejection
        """
        # Check-then-increment must not interleave within this process
        with self._lock:
            for window in self.windows:
                counter = self.store.get(self._key(email, window), now)
                if counter is not None and counter.count >= window.limit:
                    retry_after = self._retry_after(counter, now)
                    return ThrottleDecision(
                        allowed=False,
                        message=window.rejection_message(retry_after),
                        retry_after_seconds=retry_after,
                    )

            for window in self.windows:
                self.store.increment(self._key(email, window), window.seconds, now)

        return ThrottleDecision(allowed=True, message="Resend email sent")

    def _key(self, email: str, window: ResendWindow) -> str:
        return f"resend:{email}:{window.name}"

    def _retry_after(self, counter: WindowCounter, now: datetime) -> int:
        return max(1, math.ceil((counter.reset_at - now).total_seconds()))
