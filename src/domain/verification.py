"""
Verification service - credential and email-verification lifecycle.

This module composes the credential hasher, token issuer/verifier,
lockout policy and resend throttle into the account use cases:
register, resend, verify, sign-in and password change.

Verification State Machine
==========================

States (per account):
- NO_TOKEN:     no challenge stored (never issued, consumed, or verified)
- TOKEN_ACTIVE: challenge stored and not yet expired
- VERIFIED:     terminal; email_verified is set and the challenge cleared
- EXPIRED:      challenge stored but past expires_at (evaluated lazily)
- LOCKED:       locked_until in the future after repeated failures

Transitions:
    NO_TOKEN     -> TOKEN_ACTIVE   (issue; overwrites any earlier token)
    TOKEN_ACTIVE -> VERIFIED       (token or display code matches)
    TOKEN_ACTIVE -> LOCKED         (failure count reaches the ceiling)
    TOKEN_ACTIVE -> EXPIRED        (clock passes expires_at)
    any          -> TOKEN_ACTIVE   (re-issue resets attempts and lock)

Wrong, expired and absent tokens all surface as INVALID_TOKEN.
"""

import logging
from collections.abc import Callable
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .credentials import CredentialHasher, dummy_bcrypt_hash
from .exceptions import InvalidCredentials, StoreUnavailable, TokenIssueFailed
from .lockout import LockoutPolicy, LockStatus
from .ports import Account, AccountRepository, EmailSender, VerifyError
from .throttle import ResendThrottle, ThrottleDecision
from .tokens import IssuedToken, TokenIssuer, TokenVerifier, hash_token

logger = logging.getLogger(__name__)

GENERIC_RESEND_MESSAGE = "If an account exists, we sent a verification email"
SUPPORTED_LOCALES = ("en", "fr")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    """
    Normalize email address for consistent storage and lookup.

    Applies: strip whitespace + lowercase
    """
    return email.strip().lower()


def normalize_locale(locale: str | None) -> str:
    if locale and locale.lower() in SUPPORTED_LOCALES:
        return locale.lower()
    return "en"


@dataclass(frozen=True)
class VerifyOutcome:
    """Result of a verification attempt."""

    ok: bool
    message: str
    account_id: str | None = None
    email: str | None = None
    error: VerifyError | None = None
    minutes_remaining: int | None = None


@dataclass(frozen=True)
class ResendOutcome:
    """Result of a resend request. Identical for every non-throttled case."""

    allowed: bool
    message: str
    retry_after_seconds: int | None = None


@dataclass(frozen=True)
class Registration:
    """A newly created account and the token issued for it."""

    account: Account
    issued: IssuedToken


@dataclass(frozen=True)
class VerificationStatus:
    """Precise verification view for an authenticated caller."""

    email: str
    email_verified: bool
    is_locked: bool
    minutes_remaining: int


@dataclass
class VerificationService:
    """
    Domain service for the credential and email-verification lifecycle.

    Blocking (bcrypt-bound) throughout; the API layer runs these methods
    on a bounded worker pool. Emails are handed to `email_executor` and
    never awaited.
    """

    repository: AccountRepository
    email_sender: EmailSender
    throttle: ResendThrottle
    email_executor: Executor
    hasher: CredentialHasher = field(default_factory=CredentialHasher)
    issuer: TokenIssuer = field(default_factory=TokenIssuer)
    verifier: TokenVerifier = field(default_factory=TokenVerifier)
    lockout: LockoutPolicy = field(default_factory=LockoutPolicy)
    clock: Callable[[], datetime] = utcnow

    def __post_init__(self) -> None:
        # Cached per cost, so only the first service in a process pays for these
        self._password_dummy_hash = dummy_bcrypt_hash(self.hasher.cost)
        self._display_code_dummy_hash = dummy_bcrypt_hash(self.issuer.display_code_cost)

    # -- registration ---------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        name: str | None = None,
        locale: str | None = None,
    ) -> Registration:
        """
        Create an unverified account and send its verification email.

        The account is removed again if the token cannot be issued.
        Email delivery failures are logged only.

        Args:
            email: User's email address (will be normalized)
            password: User's password (will be hashed)
            name: Optional display name
            locale: Preferred language for emails

        Returns:
            Registration with the new account and its issued token

        Raises:
            EmailAlreadyRegistered: If the email is taken
            TokenIssueFailed: If the verification token could not be stored
        """
        normalized_email = normalize_email(email)
        account = self.repository.create_account(
            normalized_email,
            self.hasher.hash(password),
            name=name,
            locale=normalize_locale(locale),
        )

        try:
            issued = self.issue_verification(account.id)
        except Exception as e:
            logger.error(f"Token issue failed for new account {account.id}, rolling back")
            self._roll_back_registration(account.id)
            raise TokenIssueFailed(normalized_email) from e

        self._dispatch_email(account, issued)
        logger.info(f"Registered account {account.id}")
        return Registration(account=account, issued=issued)

    def _roll_back_registration(self, account_id: str) -> None:
        try:
            self.repository.delete_account(account_id)
        except StoreUnavailable:
            logger.exception(f"Rollback failed, account {account_id} left without a token")

    def issue_verification(self, account_id: str) -> IssuedToken:
        """
        Issue a fresh challenge for an account, replacing any live one.

        Stores the hashes and expiry in one write that also resets the
        attempt counter and clears the lock.
        """
        issued = self.issuer.issue(self.clock())
        self.repository.store_challenge(account_id, issued.challenge)
        return issued

    # -- resend -----------------------------------------------------------

    def resend(self, email: str) -> ResendOutcome:
        """
        Re-issue a verification token for an email address.

        Unknown, already-verified and locked accounts all receive the
        same generic response as a successful resend. Only the throttle
        rejection differs.
        """
        normalized_email = normalize_email(email)
        decision: ThrottleDecision = self.throttle.check(normalized_email, self.clock())
        if not decision.allowed:
            logger.info("Resend throttled")
            return ResendOutcome(
                allowed=False,
                message=decision.message,
                retry_after_seconds=decision.retry_after_seconds,
            )

        generic = ResendOutcome(allowed=True, message=GENERIC_RESEND_MESSAGE)

        account = self.repository.get_account_by_email(normalized_email)
        if account is None or account.email_verified:
            return generic

        if self.check_locked(account).is_locked:
            return generic

        issued = self.issue_verification(account.id)
        self._dispatch_email(account, issued)
        return generic

    # -- verification -----------------------------------------------------

    def verify(self, presented: str, email: str | None = None) -> VerifyOutcome:
        """
        Verify a presented token or display code.

        The account is resolved from `email` when given, otherwise from
        the hash of the presented token. A locked account is rejected
        before its challenge is consulted. Every mismatch counts toward
        the lockout.

        Args:
            presented: Raw token or display code as typed by the user
            email: Optional email the code was sent to

        Returns:
            VerifyOutcome carrying INVALID_TOKEN, RATE_LIMIT or
            INTERNAL_ERROR on failure
        """
        try:
            return self._verify(presented, email)
        except StoreUnavailable:
            logger.exception("Account store failed during verification")
            return VerifyOutcome(
                ok=False,
                message="Email verification failed",
                error=VerifyError.INTERNAL_ERROR,
            )

    def _verify(self, presented: str, email: str | None) -> VerifyOutcome:
        now = self.clock()
        account = self._resolve_account(presented, email)

        if account is None:
            self._burn_display_code_check(presented)
            return self._invalid()

        lock = self.check_locked(account)
        if lock.is_locked:
            return VerifyOutcome(
                ok=False,
                message=f"Too many verification attempts. Try again in {lock.minutes_remaining} minutes.",
                error=VerifyError.RATE_LIMIT,
                minutes_remaining=lock.minutes_remaining,
            )

        challenge = account.challenge
        if challenge is None or challenge.is_expired(now):
            self._burn_display_code_check(presented)
            return self._invalid()

        if not self.verifier.matches(challenge, presented):
            record = self.repository.record_failed_attempt(
                account.id, self.lockout.max_attempts, self.lockout.lock_until(now)
            )
            if record.attempts >= self.lockout.max_attempts:
                logger.warning(f"Verification locked for account {account.id}")
            return self._invalid()

        if account.email_verified:
            return VerifyOutcome(
                ok=True,
                message="Email already verified",
                account_id=account.id,
                email=account.email,
            )

        if not self.repository.mark_verified(account.id, now):
            return self._lost_verification_race(account.id)

        logger.info(f"Email verified for account {account.id}")
        return VerifyOutcome(
            ok=True,
            message="Email verified successfully",
            account_id=account.id,
            email=account.email,
        )

    def _resolve_account(self, presented: str, email: str | None) -> Account | None:
        if email:
            return self.repository.get_account_by_email(normalize_email(email))
        return self.repository.find_account_by_token_hash(hash_token(presented.strip()))

    def _invalid(self) -> VerifyOutcome:
        return VerifyOutcome(
            ok=False,
            message="Invalid or expired verification code",
            error=VerifyError.INVALID_TOKEN,
        )

    def _lost_verification_race(self, account_id: str) -> VerifyOutcome:
        """A concurrent request verified (or removed) the account first."""
        current = self.repository.get_account(account_id)
        if current is None or not current.email_verified:
            return self._invalid()
        return VerifyOutcome(
            ok=True,
            message="Email already verified",
            account_id=current.id,
            email=current.email,
        )

    def _burn_display_code_check(self, presented: str) -> None:
        """Run one bcrypt comparison so misses cost the same as real checks."""
        self.hasher.verify(presented, self._display_code_dummy_hash)

    # -- lockout ----------------------------------------------------------

    def check_locked(self, account: Account) -> LockStatus:
        return self.lockout.check(
            account.verification_attempts,
            account.verification_locked_until,
            self.clock(),
        )

    # -- credentials ------------------------------------------------------

    def sign_in(self, email: str, password: str) -> Account:
        """
        Authenticate an email/password pair.

        A legacy SHA-256 hash that validates is replaced by a bcrypt hash
        of the same plaintext before returning.

        Raises:
            InvalidCredentials: On unknown email or wrong password
        """
        normalized_email = normalize_email(email)
        account = self.repository.get_account_by_email(normalized_email)
        if account is None:
            self.hasher.verify(password, self._password_dummy_hash)
            raise InvalidCredentials(normalized_email)

        check = self.hasher.verify(password, account.password_hash)
        if not check.valid:
            raise InvalidCredentials(normalized_email)

        if check.needs_migration:
            self._migrate_password_hash(account, password)
        return account

    def _migrate_password_hash(self, account: Account, password: str) -> None:
        """Re-hash a legacy password; the sign-in succeeds even if this cannot."""
        try:
            new_hash = self.hasher.hash(password)
        except ValueError:
            logger.warning(
                f"Legacy password for account {account.id} too long for bcrypt, kept as is"
            )
            return

        migrated = self.repository.update_password_hash(
            account.id, new_hash, expected_hash=account.password_hash
        )
        if migrated:
            logger.info(f"Migrated legacy password hash for account {account.id}")
        else:
            logger.warning(f"Password hash changed during migration for account {account.id}")

    def change_password(self, email: str, old_password: str, new_password: str) -> None:
        """
        Replace an account's password after re-checking the current one.

        Raises:
            InvalidCredentials: If the current password does not match
        """
        account = self.sign_in(email, old_password)
        self.repository.update_password_hash(account.id, self.hasher.hash(new_password))
        logger.info(f"Password changed for account {account.id}")

    def verification_status(self, email: str, password: str) -> VerificationStatus:
        """Precise verification state for an authenticated caller."""
        account = self.sign_in(email, password)
        lock = self.check_locked(account)
        return VerificationStatus(
            email=account.email,
            email_verified=account.email_verified,
            is_locked=lock.is_locked,
            minutes_remaining=lock.minutes_remaining,
        )

    # -- email dispatch ---------------------------------------------------

    def _dispatch_email(self, account: Account, issued: IssuedToken) -> None:
        """Hand the verification email to the background executor."""
        try:
            future = self.email_executor.submit(
                self.email_sender.send_verification_email,
                account.email,
                issued.token,
                issued.display_code,
                account.locale,
            )
        except RuntimeError:
            logger.exception(f"Could not schedule verification email for account {account.id}")
            return
        future.add_done_callback(_log_dispatch_failure)


def _log_dispatch_failure(future: Future) -> None:
    error = future.exception()
    if error is not None:
        logger.error("Verification email dispatch failed", exc_info=error)
