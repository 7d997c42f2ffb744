"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the interfaces (ports) that the domain requires
from infrastructure, plus the value objects that cross them.
Adapters implement these protocols.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

from .tokens import VerificationChallenge


class VerifyError(str, Enum):
    """
    Caller-facing failure kinds for a verification attempt.

    INVALID_TOKEN deliberately covers wrong, expired and absent tokens
    so callers cannot use it as a validity oracle.
    """

    INVALID_TOKEN = "INVALID_TOKEN"
    RATE_LIMIT = "RATE_LIMIT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(frozen=True)
class Account:
    """
    Account row as seen by the domain.

    `challenge` is None when no verification token is live. The three
    stored fields behind it are always written and cleared together.
    """

    id: str
    email: str
    password_hash: str
    email_verified: bool = False
    email_verified_at: datetime | None = None
    name: str | None = None
    locale: str = "en"
    challenge: VerificationChallenge | None = None
    verification_attempts: int = 0
    verification_locked_until: datetime | None = None


@dataclass(frozen=True)
class AttemptRecord:
    """Counter state after a failed verification attempt was recorded."""

    attempts: int
    locked_until: datetime | None


@dataclass(frozen=True)
class WindowCounter:
    """Fixed-window counter: `count` hits until the window closes at `reset_at`."""

    count: int
    reset_at: datetime


class AccountRepository(Protocol):
    """Port interface for account persistence."""

    def create_account(
        self, email: str, password_hash: str, name: str | None = None, locale: str = "en"
    ) -> Account:
        """
        Create an unverified account.

        Raises:
            EmailAlreadyRegistered: If the email is taken
        """
        ...

    def delete_account(self, account_id: str) -> None:
        """Remove an account (used to roll back a failed registration)."""
        ...

    def get_account(self, account_id: str) -> Account | None:
        """Fetch an account by id."""
        ...

    def get_account_by_email(self, email: str) -> Account | None:
        """Fetch an account by normalized email."""
        ...

    def find_account_by_token_hash(self, token_hash: str) -> Account | None:
        """Fetch the account whose live challenge carries this token hash."""
        ...

    def store_challenge(self, account_id: str, challenge: VerificationChallenge) -> None:
        """
        Replace the account's verification challenge.

        Must atomically write token hash, display code hash and expiry,
        reset attempts to 0 and clear any lock. Overwriting is what
        invalidates the previous challenge.
        """
        ...

    def record_failed_attempt(
        self, account_id: str, max_attempts: int, lock_until: datetime
    ) -> AttemptRecord:
        """
        Atomically increment the attempt counter.

        When the incremented counter reaches `max_attempts`, the lock is
        set to `lock_until` in the same write.
        """
        ...

    def mark_verified(self, account_id: str, verified_at: datetime) -> bool:
        """
        Flip the account to verified and clear all verification fields.

        Returns:
            True if this call performed the transition, False if the
            account was already verified (or missing)
        """
        ...

    def update_password_hash(
        self, account_id: str, new_hash: str, expected_hash: str | None = None
    ) -> bool:
        """
        Replace the stored password hash.

        When `expected_hash` is given the write only happens if the stored
        hash still equals it (compare-and-set for legacy migration).

        Returns:
            True if the hash was written
        """
        ...


class EmailSender(Protocol):
    """Port interface for verification email delivery."""

    def send_verification_email(
        self, recipient: str, token: str, display_code: str, locale: str
    ) -> None:
        """
        Deliver the verification token and its display code.

        Args:
            recipient: Normalized email address
            token: Raw verification token (link form)
            display_code: Short uppercase code for manual entry
            locale: Language of the message ("en" or "fr")
        """
        ...


class ResendCounterStore(Protocol):
    """
    Port interface for keyed fixed-window counters with TTL.

    Implementations may be process-local or shared (e.g. Redis) so that
    limits hold across several application instances.
    """

    def get(self, key: str, now: datetime) -> WindowCounter | None:
        """Return the live counter for `key`, or None if absent or elapsed."""
        ...

    def increment(self, key: str, window_seconds: int, now: datetime) -> WindowCounter:
        """
        Add one hit to `key`.

        Opens a new window of `window_seconds` starting at `now` when no
        live counter exists.
        """
        ...
