"""
Verification tokens - issuing and matching email verification challenges.

A challenge is issued as a 256-bit hex token plus a short display code
(the token's first characters, uppercased) for manual entry. Neither
raw value is ever stored:

- token:        SHA-256 hex digest. The token has full entropy, so a fast
                deterministic hash is enough and lets the store index it.
- display code: bcrypt. Eight hex characters are guessable offline, so
                the code gets a slow salted hash.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

import bcrypt

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
DISPLAY_CODE_LENGTH = 8
TOKEN_TTL = timedelta(hours=2)
DEFAULT_DISPLAY_CODE_COST = 12


@dataclass(frozen=True)
class VerificationChallenge:
    """
    Stored half of a live verification token.

    All three fields exist together or the challenge does not exist at
    all (Account.challenge is None).
    """

    token_hash: str
    display_code_hash: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """A challenge is live strictly before `expires_at`."""
        return now >= self.expires_at


@dataclass(frozen=True)
class IssuedToken:
    """Raw values to deliver to the user plus the challenge to persist."""

    token: str
    display_code: str
    challenge: VerificationChallenge

    @property
    def expires_at(self) -> datetime:
        return self.challenge.expires_at


def hash_token(token: str) -> str:
    """Deterministic SHA-256 hex digest of a raw token."""
    return hashlib.sha256(token.encode()).hexdigest()


def derive_display_code(token: str, length: int = DISPLAY_CODE_LENGTH) -> str:
    """Human-typeable code: first `length` characters of the token, uppercased."""
    return token[:length].upper()


def normalize_display_code(presented: str) -> str:
    return presented.strip().upper()


@dataclass
class TokenIssuer:
    """Generates verification tokens and their stored challenge."""

    ttl: timedelta = TOKEN_TTL
    display_code_length: int = DISPLAY_CODE_LENGTH
    display_code_cost: int = DEFAULT_DISPLAY_CODE_COST

    def issue(self, now: datetime) -> IssuedToken:
        """
        Generate a new token, its display code and hashes of both.

        Args:
            now: Issue time; the challenge expires `ttl` later

        Returns:
            IssuedToken holding the raw token/code for delivery and the
            challenge to persist
        """
        token = secrets.token_hex(TOKEN_BYTES)
        display_code = derive_display_code(token, self.display_code_length)
        display_code_hash = bcrypt.hashpw(
            display_code.encode(), bcrypt.gensalt(rounds=self.display_code_cost)
        ).decode()

        challenge = VerificationChallenge(
            token_hash=hash_token(token),
            display_code_hash=display_code_hash,
            expires_at=now + self.ttl,
        )
        return IssuedToken(token=token, display_code=display_code, challenge=challenge)


class TokenVerifier:
    """Matches a presented token or display code against a challenge."""

    def matches(self, challenge: VerificationChallenge, presented: str) -> bool:
        """
        Check `presented` against both forms of the challenge.

        The full-token comparison runs first (constant-time over the
        digests). Only when it fails is the display code checked with
        bcrypt after trimming and uppercasing.
        """
        presented_hash = hash_token(presented.strip())
        if secrets.compare_digest(presented_hash, challenge.token_hash):
            return True

        code = normalize_display_code(presented)
        try:
            return bcrypt.checkpw(code.encode(), challenge.display_code_hash.encode())
        except ValueError:
            logger.warning("bcrypt rejected display code check input, treated as non-match")
            return False
