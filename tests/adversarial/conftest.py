"""
Shared fixtures for adversarial tests.

Provides a registered victim account and an API client wired to the
in-memory VerificationService from the root conftest.
"""

from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.dependencies import get_verification_service
from src.api.v1.routes import router
from src.domain.verification import VerificationService
from tests.helpers import Victim

VICTIM_EMAIL = "victim@example.com"
VICTIM_PASSWORD = "victimpassword"


@pytest.fixture
def victim(service: VerificationService, email_sender: Mock) -> Victim:
    """Register the victim account."""
    registration = service.register(VICTIM_EMAIL, VICTIM_PASSWORD)
    email_sender.reset_mock()
    return Victim(
        account_id=registration.account.id,
        email=registration.account.email,
        token=registration.issued.token,
        display_code=registration.issued.display_code,
    )


@pytest.fixture
def api_client(service: VerificationService) -> Iterator[TestClient]:
    """TestClient whose routes use the in-memory service."""
    app = FastAPI()
    app.include_router(router, prefix="/v1")
    app.state.hashing_executor = ThreadPoolExecutor(max_workers=4)
    app.dependency_overrides[get_verification_service] = lambda: service
    yield TestClient(app)
    app.state.hashing_executor.shutdown(wait=True)
