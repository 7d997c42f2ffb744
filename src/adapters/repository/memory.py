"""
In-memory repository adapter - Implements AccountRepository protocol.

Thread-safe dict-backed store for development and tests. Every
method runs under one lock, which gives the same single-row atomicity
the PostgreSQL adapter gets from row locks.
"""

import threading
import uuid
from dataclasses import replace
from datetime import datetime

from src.domain.exceptions import EmailAlreadyRegistered
from src.domain.ports import Account, AttemptRecord
from src.domain.tokens import VerificationChallenge


class InMemoryAccountRepository:
    """
    Implements AccountRepository protocol with a process-local dict.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._lock = threading.Lock()

    def create_account(
        self, email: str, password_hash: str, name: str | None = None, locale: str = "en"
    ) -> Account:
        with self._lock:
            if any(a.email == email for a in self._accounts.values()):
                raise EmailAlreadyRegistered(email)
            account = Account(
                id=str(uuid.uuid4()),
                email=email,
                password_hash=password_hash,
                name=name,
                locale=locale,
            )
            self._accounts[account.id] = account
            return account

    def delete_account(self, account_id: str) -> None:
        with self._lock:
            self._accounts.pop(account_id, None)

    def get_account(self, account_id: str) -> Account | None:
        with self._lock:
            return self._accounts.get(account_id)

    def get_account_by_email(self, email: str) -> Account | None:
        with self._lock:
            return next((a for a in self._accounts.values() if a.email == email), None)

    def find_account_by_token_hash(self, token_hash: str) -> Account | None:
        with self._lock:
            return next(
                (
                    a
                    for a in self._accounts.values()
                    if a.challenge is not None and a.challenge.token_hash == token_hash
                ),
                None,
            )

    def store_challenge(self, account_id: str, challenge: VerificationChallenge) -> None:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return
            self._accounts[account_id] = replace(
                account,
                challenge=challenge,
                verification_attempts=0,
                verification_locked_until=None,
            )

    def record_failed_attempt(
        self, account_id: str, max_attempts: int, lock_until: datetime
    ) -> AttemptRecord:
        with self._lock:
            account = self._accounts[account_id]
            attempts = account.verification_attempts + 1
            locked_until = account.verification_locked_until
            if attempts >= max_attempts:
                locked_until = lock_until
            self._accounts[account_id] = replace(
                account,
                verification_attempts=attempts,
                verification_locked_until=locked_until,
            )
            return AttemptRecord(attempts=attempts, locked_until=locked_until)

    def mark_verified(self, account_id: str, verified_at: datetime) -> bool:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None or account.email_verified:
                return False
            self._accounts[account_id] = replace(
                account,
                email_verified=True,
                email_verified_at=verified_at,
                challenge=None,
                verification_attempts=0,
                verification_locked_until=None,
            )
            return True

    def update_password_hash(
        self, account_id: str, new_hash: str, expected_hash: str | None = None
    ) -> bool:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return False
            if expected_hash is not None and account.password_hash != expected_hash:
                return False
            self._accounts[account_id] = replace(account, password_hash=new_hash)
            return True
