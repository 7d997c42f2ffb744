"""
Domain layer - Pure business logic with zero framework imports.

This package contains the credential and email-verification lifecycle:
password hashing with legacy migration, verification tokens with a
display code fallback, attempt lockout and resend throttling. It
defines its own port interfaces for infrastructure abstraction.
"""

from .credentials import CredentialHasher, HashScheme, PasswordCheck
from .exceptions import (
    AccountError,
    EmailAlreadyRegistered,
    InvalidCredentials,
    StoreUnavailable,
    TokenIssueFailed,
)
from .lockout import LockoutPolicy, LockStatus
from .ports import (
    Account,
    AccountRepository,
    EmailSender,
    ResendCounterStore,
    VerifyError,
    WindowCounter,
)
from .throttle import ResendThrottle, ThrottleDecision
from .tokens import IssuedToken, TokenIssuer, TokenVerifier, VerificationChallenge
from .verification import (
    GENERIC_RESEND_MESSAGE,
    Registration,
    ResendOutcome,
    VerificationService,
    VerificationStatus,
    VerifyOutcome,
)

__all__ = [
    "GENERIC_RESEND_MESSAGE",
    "Account",
    "AccountError",
    "AccountRepository",
    "CredentialHasher",
    "EmailAlreadyRegistered",
    "EmailSender",
    "HashScheme",
    "InvalidCredentials",
    "IssuedToken",
    "LockStatus",
    "LockoutPolicy",
    "PasswordCheck",
    "Registration",
    "ResendCounterStore",
    "ResendOutcome",
    "ResendThrottle",
    "StoreUnavailable",
    "ThrottleDecision",
    "TokenIssueFailed",
    "TokenIssuer",
    "TokenVerifier",
    "VerificationChallenge",
    "VerificationService",
    "VerificationStatus",
    "VerifyError",
    "VerifyOutcome",
    "WindowCounter",
]
