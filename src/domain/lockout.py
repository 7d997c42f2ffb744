"""
Verification-attempt lockout policy.

Every failed verification attempt for an account increments its
counter. Reaching MAX_VERIFICATION_ATTEMPTS locks verification for
LOCKOUT_DURATION. The lock is evaluated lazily from `locked_until`;
there is no background sweep.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

MAX_VERIFICATION_ATTEMPTS = 5
LOCKOUT_DURATION = timedelta(minutes=15)


@dataclass(frozen=True)
class LockStatus:
    """Whether verification is locked and for how many whole minutes."""

    is_locked: bool
    minutes_remaining: int = 0


@dataclass(frozen=True)
class LockoutPolicy:
    """Attempt ceiling and lock duration for verification attempts."""

    max_attempts: int = MAX_VERIFICATION_ATTEMPTS
    lock_duration: timedelta = LOCKOUT_DURATION

    def check(self, attempts: int, locked_until: datetime | None, now: datetime) -> LockStatus:
        """
        Report the lock state for an account.

        Only `locked_until` decides; the attempts counter is consulted
        when a failure is recorded, not here.
        """
        if locked_until is None or now >= locked_until:
            return LockStatus(is_locked=False)
        remaining = (locked_until - now).total_seconds()
        return LockStatus(is_locked=True, minutes_remaining=math.ceil(remaining / 60))

    def lock_until(self, now: datetime) -> datetime:
        return now + self.lock_duration
