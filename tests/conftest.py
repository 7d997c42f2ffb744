"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- A controllable clock for expiry, lockout and window boundaries
- A synchronous executor standing in for background email dispatch
- A VerificationService wired to in-memory adapters with low bcrypt cost
"""

from unittest.mock import Mock

import pytest

from src.adapters.ratelimit.memory import InMemoryResendCounterStore
from src.adapters.repository.memory import InMemoryAccountRepository
from src.domain.credentials import CredentialHasher
from src.domain.throttle import ResendThrottle
from src.domain.tokens import TokenIssuer
from src.domain.verification import VerificationService
from tests.helpers import TEST_BCRYPT_COST, FakeClock, ImmediateExecutor


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned to START."""
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryAccountRepository:
    """Empty in-memory account repository."""
    return InMemoryAccountRepository()


@pytest.fixture
def counter_store() -> InMemoryResendCounterStore:
    """Empty in-memory resend counter store."""
    return InMemoryResendCounterStore()


@pytest.fixture
def email_sender() -> Mock:
    """Mock EmailSender recording every dispatched email."""
    return Mock()


@pytest.fixture
def email_executor() -> ImmediateExecutor:
    """Synchronous stand-in for the background email executor."""
    return ImmediateExecutor()


@pytest.fixture
def hasher() -> CredentialHasher:
    """Credential hasher at minimum cost."""
    return CredentialHasher(cost=TEST_BCRYPT_COST)


@pytest.fixture
def service(
    repository: InMemoryAccountRepository,
    email_sender: Mock,
    counter_store: InMemoryResendCounterStore,
    email_executor: ImmediateExecutor,
    hasher: CredentialHasher,
    clock: FakeClock,
) -> VerificationService:
    """VerificationService wired to in-memory adapters and the fake clock."""
    return VerificationService(
        repository=repository,
        email_sender=email_sender,
        throttle=ResendThrottle(store=counter_store),
        email_executor=email_executor,
        hasher=hasher,
        issuer=TokenIssuer(display_code_cost=TEST_BCRYPT_COST),
        clock=clock,
    )
