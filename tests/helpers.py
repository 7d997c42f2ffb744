"""Test doubles and helpers shared across test packages."""

from collections.abc import Callable
from concurrent.futures import Executor, Future
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

# Minimum bcrypt cost keeps the suite fast
TEST_BCRYPT_COST = 4

START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class ImmediateExecutor(Executor):
    """Runs submitted work inline and returns an already-completed Future."""

    def __init__(self) -> None:
        self.submitted = 0

    def submit(self, fn: Callable, /, *args, **kwargs) -> Future:
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


@dataclass(frozen=True)
class Victim:
    """A freshly registered account and the secrets mailed to it."""

    account_id: str
    email: str
    token: str
    display_code: str


def last_sent_token(email_sender: Mock) -> str:
    """Raw token from the most recent verification email."""
    return email_sender.send_verification_email.call_args[0][1]


def last_sent_code(email_sender: Mock) -> str:
    """Display code from the most recent verification email."""
    return email_sender.send_verification_email.call_args[0][2]
