"""
Unit tests for VerificationService domain logic.

Tests domain logic against in-memory adapters to verify:
- Registration flow, rollback and email dispatch
- Token verification state machine (single use, re-issue, expiry)
- Display code fallback
- Attempt lockout
- Resend throttling and uniform responses
- Sign-in with legacy hash migration
"""

import logging
from datetime import timedelta
from unittest.mock import Mock

import pytest

from src.adapters.repository.memory import InMemoryAccountRepository
from src.domain.credentials import HashScheme, sha256_hex
from src.domain.exceptions import (
    EmailAlreadyRegistered,
    InvalidCredentials,
    StoreUnavailable,
    TokenIssueFailed,
)
from src.domain.ports import VerifyError
from src.domain.verification import GENERIC_RESEND_MESSAGE, VerificationService
from tests.helpers import FakeClock, ImmediateExecutor, last_sent_code, last_sent_token

EMAIL = "user@example.com"
PASSWORD = "password123"


def register(service: VerificationService, email: str = EMAIL) -> str:
    """Register an account and return its raw token."""
    return service.register(email, PASSWORD).issued.token


class TestRegister:
    """Tests for register()."""

    def test_register_creates_unverified_account(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        service.register(EMAIL, PASSWORD)

        account = repository.get_account_by_email(EMAIL)
        assert account is not None
        assert account.email_verified is False
        assert account.challenge is not None

    def test_register_normalizes_email(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        service.register("  User@Example.COM  ", PASSWORD)
        assert repository.get_account_by_email("user@example.com") is not None

    def test_password_stored_as_bcrypt(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        service.register(EMAIL, PASSWORD)
        account = repository.get_account_by_email(EMAIL)
        assert account.password_hash.startswith("$2")
        assert PASSWORD not in account.password_hash

    def test_register_sends_token_and_code(
        self, service: VerificationService, email_sender: Mock
    ) -> None:
        registration = service.register(EMAIL, PASSWORD, locale="fr")

        email_sender.send_verification_email.assert_called_once_with(
            EMAIL,
            registration.issued.token,
            registration.issued.token[:8].upper(),
            "fr",
        )

    def test_unknown_locale_falls_back_to_en(
        self, service: VerificationService, email_sender: Mock
    ) -> None:
        service.register(EMAIL, PASSWORD, locale="de")
        assert email_sender.send_verification_email.call_args[0][3] == "en"

    def test_duplicate_email_raises(self, service: VerificationService) -> None:
        service.register(EMAIL, PASSWORD)
        with pytest.raises(EmailAlreadyRegistered):
            service.register(EMAIL.upper(), PASSWORD)

    def test_email_failure_does_not_fail_registration(
        self,
        service: VerificationService,
        email_sender: Mock,
        repository: InMemoryAccountRepository,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Dispatch errors are logged, not raised."""
        email_sender.send_verification_email.side_effect = ConnectionError("smtp down")

        with caplog.at_level(logging.ERROR):
            service.register(EMAIL, PASSWORD)

        assert repository.get_account_by_email(EMAIL) is not None
        assert "Verification email dispatch failed" in caplog.text

    def test_email_dispatched_on_executor(
        self, service: VerificationService, email_executor: ImmediateExecutor
    ) -> None:
        service.register(EMAIL, PASSWORD)
        assert email_executor.submitted == 1

    def test_token_failure_rolls_back_account(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        """An account whose token cannot be stored does not survive."""
        repository.store_challenge = Mock(side_effect=StoreUnavailable("write failed"))

        with pytest.raises(TokenIssueFailed):
            service.register(EMAIL, PASSWORD)

        assert repository.get_account_by_email(EMAIL) is None

    def test_failed_rollback_is_logged_and_keeps_token_error(
        self,
        service: VerificationService,
        repository: InMemoryAccountRepository,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        repository.store_challenge = Mock(side_effect=StoreUnavailable("write failed"))
        repository.delete_account = Mock(side_effect=StoreUnavailable("delete failed"))

        with caplog.at_level(logging.ERROR), pytest.raises(TokenIssueFailed):
            service.register(EMAIL, PASSWORD)

        assert "Rollback failed" in caplog.text

    def test_token_failure_sends_no_email(
        self,
        service: VerificationService,
        repository: InMemoryAccountRepository,
        email_sender: Mock,
    ) -> None:
        repository.store_challenge = Mock(side_effect=StoreUnavailable("write failed"))
        with pytest.raises(TokenIssueFailed):
            service.register(EMAIL, PASSWORD)
        email_sender.send_verification_email.assert_not_called()


class TestVerifyToken:
    """Tests for verify() with the full token."""

    def test_valid_token_verifies(
        self, service: VerificationService, repository: InMemoryAccountRepository, clock: FakeClock
    ) -> None:
        token = register(service)

        outcome = service.verify(token)

        assert outcome.ok is True
        assert outcome.email == EMAIL
        assert outcome.message == "Email verified successfully"
        account = repository.get_account_by_email(EMAIL)
        assert account.email_verified is True
        assert account.email_verified_at == clock()
        assert account.challenge is None
        assert account.verification_attempts == 0

    def test_token_is_single_use(self, service: VerificationService) -> None:
        token = register(service)
        assert service.verify(token).ok is True

        outcome = service.verify(token)

        assert outcome.ok is False
        assert outcome.error == VerifyError.INVALID_TOKEN

    def test_reissue_invalidates_previous_token(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        first = register(service)
        account = repository.get_account_by_email(EMAIL)
        second = service.issue_verification(account.id).token

        assert service.verify(first).error == VerifyError.INVALID_TOKEN
        assert service.verify(second).ok is True

    def test_unknown_token_invalid(self, service: VerificationService) -> None:
        register(service)
        outcome = service.verify("f" * 64)
        assert outcome.ok is False
        assert outcome.error == VerifyError.INVALID_TOKEN

    def test_valid_one_second_before_expiry(
        self, service: VerificationService, clock: FakeClock
    ) -> None:
        token = register(service)
        clock.advance(hours=2, seconds=-1)
        assert service.verify(token).ok is True

    def test_invalid_one_second_after_expiry(
        self, service: VerificationService, clock: FakeClock
    ) -> None:
        token = register(service)
        clock.advance(hours=2, seconds=1)

        outcome = service.verify(token)

        assert outcome.ok is False
        assert outcome.error == VerifyError.INVALID_TOKEN

    def test_expired_message_matches_wrong_token_message(
        self, service: VerificationService, clock: FakeClock
    ) -> None:
        """Expired and wrong tokens are indistinguishable."""
        token = register(service)
        wrong = service.verify("0" * 64)
        clock.advance(hours=3)
        expired = service.verify(token)
        assert wrong == expired

    def test_already_verified_account_idempotent(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        """A live token on an already-verified account succeeds without mutation."""
        token = register(service)
        service.verify(token)
        account = repository.get_account_by_email(EMAIL)
        second = service.issue_verification(account.id).token
        before = repository.get_account(account.id)

        outcome = service.verify(second)

        assert outcome.ok is True
        assert outcome.message == "Email already verified"
        assert repository.get_account(account.id) == before

    def test_losing_concurrent_verify_reports_already_verified(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        """Another request flipped the account between our read and our write."""
        token = register(service)
        mark_verified = repository.mark_verified

        def verified_elsewhere(account_id, verified_at):
            mark_verified(account_id, verified_at)
            return False

        repository.mark_verified = verified_elsewhere  # type: ignore[method-assign]

        outcome = service.verify(token)

        assert outcome.ok is True
        assert outcome.message == "Email already verified"
        assert outcome.email == EMAIL

    def test_account_removed_before_transition_is_invalid(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        token = register(service)
        account = repository.get_account_by_email(EMAIL)

        def deleted_elsewhere(account_id, verified_at):
            repository.delete_account(account_id)
            return False

        repository.mark_verified = deleted_elsewhere  # type: ignore[method-assign]

        outcome = service.verify(token)

        assert outcome.error == VerifyError.INVALID_TOKEN
        assert repository.get_account(account.id) is None

    def test_store_failure_is_internal_error(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        token = register(service)
        repository.find_account_by_token_hash = Mock(side_effect=StoreUnavailable("down"))

        outcome = service.verify(token)

        assert outcome.ok is False
        assert outcome.error == VerifyError.INTERNAL_ERROR


class TestVerifyDisplayCode:
    """Tests for verify() with the display code."""

    def test_display_code_with_email_verifies(
        self, service: VerificationService, email_sender: Mock
    ) -> None:
        register(service)
        code = last_sent_code(email_sender)
        assert service.verify(code, email=EMAIL).ok is True

    def test_display_code_is_case_insensitive(
        self, service: VerificationService, email_sender: Mock
    ) -> None:
        register(service)
        code = last_sent_code(email_sender)
        assert service.verify(f" {code.lower()} ", email=EMAIL).ok is True

    def test_display_code_is_token_prefix(
        self, service: VerificationService, email_sender: Mock
    ) -> None:
        register(service)
        assert last_sent_code(email_sender) == last_sent_token(email_sender)[:8].upper()

    def test_display_code_without_email_invalid(
        self, service: VerificationService, email_sender: Mock
    ) -> None:
        """A short code cannot identify an account on its own."""
        register(service)
        outcome = service.verify(last_sent_code(email_sender))
        assert outcome.error == VerifyError.INVALID_TOKEN

    def test_full_token_with_email_verifies(self, service: VerificationService) -> None:
        token = register(service)
        assert service.verify(token, email=EMAIL.upper()).ok is True

    def test_unknown_email_invalid(self, service: VerificationService, email_sender: Mock) -> None:
        register(service)
        outcome = service.verify(last_sent_code(email_sender), email="nobody@example.com")
        assert outcome.error == VerifyError.INVALID_TOKEN

    def test_display_code_of_other_account_invalid(
        self, service: VerificationService, email_sender: Mock
    ) -> None:
        register(service, "first@example.com")
        register(service, "second@example.com")
        second_code = last_sent_code(email_sender)

        outcome = service.verify(second_code, email="first@example.com")

        assert outcome.error == VerifyError.INVALID_TOKEN


class TestLockout:
    """Tests for verification-attempt lockout."""

    def fail(self, service: VerificationService, times: int) -> None:
        for _ in range(times):
            service.verify("WRONGCOD", email=EMAIL)

    def test_failures_increment_attempts(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        register(service)
        self.fail(service, 3)
        assert repository.get_account_by_email(EMAIL).verification_attempts == 3

    def test_five_failures_lock_for_15_minutes(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        register(service)
        self.fail(service, 5)

        account = repository.get_account_by_email(EMAIL)
        lock = service.check_locked(account)

        assert lock.is_locked is True
        assert lock.minutes_remaining == 15

    def test_correct_token_during_lock_is_rate_limited(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        token = register(service)
        self.fail(service, 5)

        outcome = service.verify(token)

        assert outcome.ok is False
        assert outcome.error == VerifyError.RATE_LIMIT
        assert outcome.minutes_remaining == 15
        assert repository.get_account_by_email(EMAIL).email_verified is False

    def test_fourth_failure_does_not_lock(self, service: VerificationService) -> None:
        token = register(service)
        self.fail(service, 4)
        assert service.verify(token).ok is True

    def test_lock_expires(self, service: VerificationService, clock: FakeClock) -> None:
        token = register(service)
        self.fail(service, 5)

        clock.advance(minutes=15)

        assert service.verify(token).ok is True

    def test_failure_after_lock_expiry_relocks(
        self, service: VerificationService, repository: InMemoryAccountRepository, clock: FakeClock
    ) -> None:
        register(service)
        self.fail(service, 5)
        clock.advance(minutes=16)

        self.fail(service, 1)

        lock = service.check_locked(repository.get_account_by_email(EMAIL))
        assert lock.is_locked is True
        assert lock.minutes_remaining == 15

    def test_failures_count_across_tokens(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        """Wrong guesses against different tokens accumulate on the account."""
        register(service)
        self.fail(service, 2)
        service.verify("0" * 64, email=EMAIL)
        service.verify("1" * 64, email=EMAIL)
        assert repository.get_account_by_email(EMAIL).verification_attempts == 4

    def test_reissue_resets_attempts_and_lock(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        register(service)
        self.fail(service, 5)
        account = repository.get_account_by_email(EMAIL)

        token = service.issue_verification(account.id).token

        account = repository.get_account(account.id)
        assert account.verification_attempts == 0
        assert account.verification_locked_until is None
        assert service.verify(token).ok is True

    def test_lockout_logged(
        self, service: VerificationService, caplog: pytest.LogCaptureFixture
    ) -> None:
        register(service)
        with caplog.at_level(logging.WARNING):
            self.fail(service, 5)
        assert "Verification locked" in caplog.text


class TestResend:
    """Tests for resend()."""

    def test_resend_issues_new_token(
        self, service: VerificationService, email_sender: Mock
    ) -> None:
        first = register(service)

        outcome = service.resend(EMAIL)

        assert outcome.allowed is True
        assert outcome.message == GENERIC_RESEND_MESSAGE
        second = last_sent_token(email_sender)
        assert second != first
        assert service.verify(first).error == VerifyError.INVALID_TOKEN
        assert service.verify(second).ok is True

    def test_unknown_email_gets_generic_response(
        self, service: VerificationService, email_sender: Mock
    ) -> None:
        outcome = service.resend("nobody@nowhere.com")
        assert outcome.allowed is True
        assert outcome.message == GENERIC_RESEND_MESSAGE
        email_sender.send_verification_email.assert_not_called()

    def test_verified_account_gets_generic_response(
        self, service: VerificationService, email_sender: Mock
    ) -> None:
        service.verify(register(service))
        email_sender.reset_mock()

        outcome = service.resend(EMAIL)

        assert outcome.message == GENERIC_RESEND_MESSAGE
        email_sender.send_verification_email.assert_not_called()

    def test_locked_account_gets_generic_response_without_new_token(
        self,
        service: VerificationService,
        email_sender: Mock,
        repository: InMemoryAccountRepository,
    ) -> None:
        register(service)
        for _ in range(5):
            service.verify("WRONGCOD", email=EMAIL)
        email_sender.reset_mock()

        outcome = service.resend(EMAIL)

        assert outcome.message == GENERIC_RESEND_MESSAGE
        email_sender.send_verification_email.assert_not_called()
        assert service.check_locked(repository.get_account_by_email(EMAIL)).is_locked

    def test_fourth_resend_in_hour_throttled(self, service: VerificationService) -> None:
        register(service)
        for _ in range(3):
            assert service.resend(EMAIL).allowed is True

        outcome = service.resend(EMAIL)

        assert outcome.allowed is False
        assert outcome.retry_after_seconds > 0

    def test_throttle_keyed_by_normalized_email(self, service: VerificationService) -> None:
        for variant in ("a@example.com", " A@example.com", "A@EXAMPLE.COM"):
            service.resend(variant)
        assert service.resend("a@example.com").allowed is False

    def test_throttle_applies_to_unknown_email(self, service: VerificationService) -> None:
        for _ in range(3):
            service.resend("nobody@nowhere.com")
        assert service.resend("nobody@nowhere.com").allowed is False

    def test_resend_allowed_after_hour(
        self, service: VerificationService, clock: FakeClock
    ) -> None:
        register(service)
        for _ in range(3):
            service.resend(EMAIL)
        clock.advance(hours=1)
        assert service.resend(EMAIL).allowed is True

    def test_dispatch_failure_swallowed(
        self, service: VerificationService, email_sender: Mock
    ) -> None:
        register(service)
        email_sender.send_verification_email.side_effect = ConnectionError("smtp down")
        assert service.resend(EMAIL).message == GENERIC_RESEND_MESSAGE


class TestSignIn:
    """Tests for sign_in() and legacy hash migration."""

    def test_sign_in_with_bcrypt_hash(self, service: VerificationService) -> None:
        register(service)
        account = service.sign_in(EMAIL, PASSWORD)
        assert account.email == EMAIL

    def test_sign_in_normalizes_email(self, service: VerificationService) -> None:
        register(service)
        assert service.sign_in(" USER@example.com ", PASSWORD).email == EMAIL

    def test_wrong_password_raises(self, service: VerificationService) -> None:
        register(service)
        with pytest.raises(InvalidCredentials):
            service.sign_in(EMAIL, "wrongpassword")

    def test_unknown_email_raises(self, service: VerificationService) -> None:
        with pytest.raises(InvalidCredentials):
            service.sign_in("nobody@example.com", PASSWORD)

    def test_legacy_hash_migrated_on_sign_in(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        account = repository.create_account(EMAIL, sha256_hex(PASSWORD))

        service.sign_in(EMAIL, PASSWORD)

        stored = repository.get_account(account.id).password_hash
        check = service.hasher.verify(PASSWORD, stored)
        assert check.valid is True
        assert check.scheme == HashScheme.BCRYPT
        assert check.needs_migration is False

    def test_legacy_password_too_long_for_bcrypt_still_signs_in(
        self,
        service: VerificationService,
        repository: InMemoryAccountRepository,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A legacy password past 72 bytes keeps its legacy hash instead of failing."""
        long_password = "x" * 80
        legacy = sha256_hex(long_password)
        account = repository.create_account(EMAIL, legacy)

        with caplog.at_level(logging.WARNING):
            signed_in = service.sign_in(EMAIL, long_password)

        assert signed_in.id == account.id
        assert repository.get_account(account.id).password_hash == legacy
        assert "too long for bcrypt" in caplog.text
        assert service.sign_in(EMAIL, long_password).id == account.id

    def test_legacy_wrong_password_not_migrated(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        legacy = sha256_hex(PASSWORD)
        account = repository.create_account(EMAIL, legacy)

        with pytest.raises(InvalidCredentials):
            service.sign_in(EMAIL, "wrongpassword")

        assert repository.get_account(account.id).password_hash == legacy

    def test_migrated_account_signs_in_again(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        repository.create_account(EMAIL, sha256_hex(PASSWORD))
        service.sign_in(EMAIL, PASSWORD)
        assert service.sign_in(EMAIL, PASSWORD).email == EMAIL

    def test_malformed_stored_hash_is_invalid_credentials(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        repository.create_account(EMAIL, "$2b$99$" + "a" * 53)
        with pytest.raises(InvalidCredentials):
            service.sign_in(EMAIL, PASSWORD)


class TestChangePassword:
    """Tests for change_password()."""

    def test_change_password(self, service: VerificationService) -> None:
        register(service)
        service.change_password(EMAIL, PASSWORD, "newpassword456")

        assert service.sign_in(EMAIL, "newpassword456").email == EMAIL
        with pytest.raises(InvalidCredentials):
            service.sign_in(EMAIL, PASSWORD)

    def test_change_password_wrong_current(self, service: VerificationService) -> None:
        register(service)
        with pytest.raises(InvalidCredentials):
            service.change_password(EMAIL, "wrongpassword", "newpassword456")

    def test_change_password_from_legacy_hash(
        self, service: VerificationService, repository: InMemoryAccountRepository
    ) -> None:
        repository.create_account(EMAIL, sha256_hex(PASSWORD))
        service.change_password(EMAIL, PASSWORD, "newpassword456")
        assert service.sign_in(EMAIL, "newpassword456").email == EMAIL


class TestVerificationStatus:
    """Tests for verification_status()."""

    def test_status_unverified(self, service: VerificationService) -> None:
        register(service)
        status = service.verification_status(EMAIL, PASSWORD)
        assert status.email_verified is False
        assert status.is_locked is False
        assert status.minutes_remaining == 0

    def test_status_locked(self, service: VerificationService, clock: FakeClock) -> None:
        register(service)
        for _ in range(5):
            service.verify("WRONGCOD", email=EMAIL)
        clock.advance(minutes=5)

        status = service.verification_status(EMAIL, PASSWORD)

        assert status.is_locked is True
        assert status.minutes_remaining == 10

    def test_status_verified(self, service: VerificationService) -> None:
        service.verify(register(service))
        assert service.verification_status(EMAIL, PASSWORD).email_verified is True

    def test_status_requires_credentials(self, service: VerificationService) -> None:
        register(service)
        with pytest.raises(InvalidCredentials):
            service.verification_status(EMAIL, "wrongpassword")
