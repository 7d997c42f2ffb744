"""
Credential hasher - bcrypt hashing with legacy SHA-256 migration.

New passwords are always hashed with bcrypt at a fixed cost factor.
Accounts created before the bcrypt migration still carry a bare
SHA-256 hex digest; those verify through a legacy scheme and are
flagged so the caller can re-hash them with the plaintext it already
holds.

Scheme detection
================

Each scheme exposes `detects(stored_hash)` and `verify(password,
stored_hash)`. Schemes are tried in order; a scheme only runs its
comparison when it recognises the stored format, so the choice of
scheme never depends on bcrypt raising on a foreign hash. A malformed
hash that still trips bcrypt is treated as a non-match and the next
scheme gets its turn.
"""

import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

import bcrypt

logger = logging.getLogger(__name__)

DEFAULT_BCRYPT_COST = 12

# bcrypt only reads the first 72 bytes of its input
BCRYPT_MAX_PASSWORD_BYTES = 72

_BCRYPT_PATTERN = re.compile(r"^\$2[abxy]?\$\d{2}\$[./A-Za-z0-9]{53}$")
_SHA256_HEX_PATTERN = re.compile(r"^[0-9a-f]{64}$")


class HashScheme(str, Enum):
    """Password hash formats the hasher can verify."""

    BCRYPT = "bcrypt"
    LEGACY_SHA256 = "legacy_sha256"


@dataclass(frozen=True)
class PasswordCheck:
    """Result of verifying a password against a stored hash."""

    valid: bool
    needs_migration: bool = False
    scheme: HashScheme | None = None


def sha256_hex(value: str) -> str:
    """Hex SHA-256 digest of a UTF-8 string (legacy password format)."""
    return hashlib.sha256(value.encode()).hexdigest()


@lru_cache(maxsize=None)
def dummy_bcrypt_hash(cost: int) -> str:
    """
    bcrypt hash of a throwaway value, computed once per cost factor.

    Compared against when no stored hash exists, so a miss costs one
    bcrypt comparison at the same cost as a real check.
    """
    return bcrypt.hashpw(b"dummy_value_for_timing_safety", bcrypt.gensalt(rounds=cost)).decode()


class BcryptScheme:
    """Current scheme: salted, slow, constant-time comparison."""

    scheme = HashScheme.BCRYPT

    def detects(self, stored_hash: str) -> bool:
        return bool(_BCRYPT_PATTERN.match(stored_hash))

    def verify(self, password: str, stored_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode(), stored_hash.encode())
        except ValueError:
            # Corrupt salt/rounds, or a password over 72 bytes
            logger.warning("bcrypt rejected password check input, treated as non-match")
            return False


class LegacySha256Scheme:
    """Pre-migration scheme: unsalted SHA-256 hex digest."""

    scheme = HashScheme.LEGACY_SHA256

    def detects(self, stored_hash: str) -> bool:
        return bool(_SHA256_HEX_PATTERN.match(stored_hash))

    def verify(self, password: str, stored_hash: str) -> bool:
        return secrets.compare_digest(sha256_hex(password), stored_hash)


@dataclass
class CredentialHasher:
    """
    Hashes and verifies passwords, flagging legacy hashes for migration.

    Only the first scheme in `schemes` is ever used to produce hashes;
    every later entry is verify-only.
    """

    cost: int = DEFAULT_BCRYPT_COST

    def __post_init__(self) -> None:
        self.schemes = (BcryptScheme(), LegacySha256Scheme())

    def hash(self, password: str) -> str:
        """
        Hash a password with bcrypt at the configured cost factor.

        Raises:
            ValueError: If the password is longer than bcrypt can read
        """
        encoded = password.encode()
        if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
            raise ValueError(f"Password exceeds {BCRYPT_MAX_PASSWORD_BYTES} bytes")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.cost)).decode()

    def verify(self, password: str, stored_hash: str) -> PasswordCheck:
        """
        Verify a password against a stored hash of any supported scheme.

        Args:
            password: Plaintext password supplied by the caller
            stored_hash: Hash as persisted on the credential record

        Returns:
            PasswordCheck with `needs_migration` set when the match came
            from a non-primary scheme
        """
        primary = self.schemes[0]
        for scheme in self.schemes:
            if not scheme.detects(stored_hash):
                continue
            if scheme.verify(password, stored_hash):
                return PasswordCheck(
                    valid=True,
                    needs_migration=scheme is not primary,
                    scheme=scheme.scheme,
                )
        return PasswordCheck(valid=False)
