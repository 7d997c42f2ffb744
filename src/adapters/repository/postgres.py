"""
PostgreSQL repository adapter - Implements AccountRepository protocol.

This module provides the PostgreSQL implementation of the domain's
repository port using psycopg3 with raw SQL.

Atomicity:
----------
Every mutation is a single UPDATE statement, so each one is atomic on
its row without an explicit transaction:

1. **store_challenge**: token hash, display code hash and expiry are
   written together with the attempt reset and lock clear. The table's
   CHECK constraint rejects any partial challenge.

2. **record_failed_attempt**: increment and lock decision happen in the
   same statement (`attempts + 1 >= max`), so concurrent failures cannot
   skip past the threshold without locking.

3. **mark_verified**: guarded by `email_verified = FALSE`; only one
   concurrent verification performs the transition.

4. **update_password_hash**: optional compare-and-set on the previous
   hash for legacy migration.

Driver errors are re-raised as StoreUnavailable so the domain never
sees psycopg types.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import psycopg
from psycopg import errors
from psycopg_pool import ConnectionPool

from src.domain.exceptions import EmailAlreadyRegistered, StoreUnavailable
from src.domain.ports import Account, AttemptRecord
from src.domain.tokens import VerificationChallenge

logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = """
    id, email, password_hash, name, locale, email_verified, email_verified_at,
    verification_token_hash, verification_display_code_hash,
    verification_token_expires_at, verification_attempts, verification_locked_until
"""


def _row_to_account(row: tuple) -> Account:
    """Map an `_ACCOUNT_COLUMNS` row to the domain Account."""
    (
        account_id,
        email,
        password_hash,
        name,
        locale,
        email_verified,
        email_verified_at,
        token_hash,
        display_code_hash,
        expires_at,
        attempts,
        locked_until,
    ) = row

    challenge = None
    if token_hash is not None:
        challenge = VerificationChallenge(
            token_hash=token_hash.strip(),
            display_code_hash=display_code_hash,
            expires_at=expires_at,
        )

    return Account(
        id=str(account_id),
        email=email,
        password_hash=password_hash,
        email_verified=email_verified,
        email_verified_at=email_verified_at,
        name=name,
        locale=locale,
        challenge=challenge,
        verification_attempts=attempts,
        verification_locked_until=locked_until,
    )


class PostgresAccountRepository:
    """
    Implements AccountRepository protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries for security.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """
        Initialize repository with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
        """
        self._pool = pool

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        """Yield a cursor inside a committed-on-success connection block."""
        try:
            with self._pool.connection() as conn, conn.cursor() as cursor:
                yield cursor
                conn.commit()
        except errors.UniqueViolation:
            raise
        except psycopg.Error as e:
            logger.error(f"Account store error: {e}")
            raise StoreUnavailable(str(e)) from e

    def create_account(
        self, email: str, password_hash: str, name: str | None = None, locale: str = "en"
    ) -> Account:
        """
        Insert an unverified account.

        The UNIQUE constraint on email decides concurrent registrations.

        Raises:
            EmailAlreadyRegistered: If the email already has an account
        """
        sql = f"""
            INSERT INTO accounts (email, password_hash, name, locale)
            VALUES (%s, %s, %s, %s)
            RETURNING {_ACCOUNT_COLUMNS}
        """
        try:
            with self._cursor() as cursor:
                cursor.execute(sql, (email, password_hash, name, locale))
                return _row_to_account(cursor.fetchone())
        except errors.UniqueViolation:
            raise EmailAlreadyRegistered(email) from None

    def delete_account(self, account_id: str) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM accounts WHERE id = %s", (account_id,))

    def get_account(self, account_id: str) -> Account | None:
        sql = f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE id = %s"
        with self._cursor() as cursor:
            cursor.execute(sql, (account_id,))
            row = cursor.fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_email(self, email: str) -> Account | None:
        sql = f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE email = %s"
        with self._cursor() as cursor:
            cursor.execute(sql, (email,))
            row = cursor.fetchone()
        return _row_to_account(row) if row is not None else None

    def find_account_by_token_hash(self, token_hash: str) -> Account | None:
        sql = f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE verification_token_hash = %s"
        with self._cursor() as cursor:
            cursor.execute(sql, (token_hash,))
            row = cursor.fetchone()
        return _row_to_account(row) if row is not None else None

    def store_challenge(self, account_id: str, challenge: VerificationChallenge) -> None:
        """
        Replace the account's challenge, resetting attempts and lock.

        Last write wins when two issues race; either token is a valid
        "current" token.
        """
        sql = """
            UPDATE accounts
            SET verification_token_hash = %s,
                verification_display_code_hash = %s,
                verification_token_expires_at = %s,
                verification_attempts = 0,
                verification_locked_until = NULL
            WHERE id = %s
        """
        with self._cursor() as cursor:
            cursor.execute(
                sql,
                (
                    challenge.token_hash,
                    challenge.display_code_hash,
                    challenge.expires_at,
                    account_id,
                ),
            )

    def record_failed_attempt(
        self, account_id: str, max_attempts: int, lock_until: datetime
    ) -> AttemptRecord:
        """
        Increment attempts and lock in one statement once the ceiling is hit.

        Args:
            account_id: Account the attempt was made against
            max_attempts: Attempt count that triggers the lock
            lock_until: Lock expiry to set when the ceiling is reached

        Returns:
            AttemptRecord with the post-increment state
        """
        sql = """
            UPDATE accounts
            SET verification_attempts = verification_attempts + 1,
                verification_locked_until = CASE
                    WHEN verification_attempts + 1 >= %s THEN %s
                    ELSE verification_locked_until
                END
            WHERE id = %s
            RETURNING verification_attempts, verification_locked_until
        """
        with self._cursor() as cursor:
            cursor.execute(sql, (max_attempts, lock_until, account_id))
            row = cursor.fetchone()
        if row is None:
            return AttemptRecord(attempts=0, locked_until=None)
        return AttemptRecord(attempts=row[0], locked_until=row[1])

    def mark_verified(self, account_id: str, verified_at: datetime) -> bool:
        sql = """
            UPDATE accounts
            SET email_verified = TRUE,
                email_verified_at = %s,
                verification_token_hash = NULL,
                verification_display_code_hash = NULL,
                verification_token_expires_at = NULL,
                verification_attempts = 0,
                verification_locked_until = NULL
            WHERE id = %s AND email_verified = FALSE
        """
        with self._cursor() as cursor:
            cursor.execute(sql, (verified_at, account_id))
            return cursor.rowcount == 1

    def update_password_hash(
        self, account_id: str, new_hash: str, expected_hash: str | None = None
    ) -> bool:
        if expected_hash is None:
            sql = "UPDATE accounts SET password_hash = %s WHERE id = %s"
            params: tuple = (new_hash, account_id)
        else:
            sql = "UPDATE accounts SET password_hash = %s WHERE id = %s AND password_hash = %s"
            params = (new_hash, account_id, expected_hash)
        with self._cursor() as cursor:
            cursor.execute(sql, params)
            return cursor.rowcount == 1


def run_migrations(pool: ConnectionPool) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
    """
    # Structure: src/adapters/repository/postgres.py -> migrations/
    migrations_dir = Path(__file__).parent.parent.parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info(f"Running {len(sql_files)} migration(s)")

    for sql_file in sql_files:
        logger.info(f"Executing migration: {sql_file.name}")
        try:
            sql_content = sql_file.read_text()

            with pool.connection() as conn:
                conn.execute(sql_content)

            logger.info(f"Migration complete: {sql_file.name}")
        except Exception as e:
            logger.error(f"Migration failed: {sql_file.name} - {e}")
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
