"""
Domain exceptions - Semantic error types for the account lifecycle.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.
"""


class AccountError(Exception):
    """Base class for account domain errors."""

    pass


class EmailAlreadyRegistered(AccountError):
    """An account already exists for this email address."""

    pass


class InvalidCredentials(AccountError):
    """Email/password pair did not authenticate."""

    pass


class TokenIssueFailed(AccountError):
    """A verification challenge could not be generated or stored."""

    pass


class StoreUnavailable(AccountError):
    """The account store failed (connection lost, query error, ...)."""

    pass
