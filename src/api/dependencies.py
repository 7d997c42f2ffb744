"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting
domain services and infrastructure adapters into routes.
"""

from concurrent.futures import Executor
from datetime import timedelta

from fastapi import Depends, Request
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from psycopg_pool import ConnectionPool

from src.adapters.repository.postgres import PostgresAccountRepository
from src.adapters.smtp.console import ConsoleEmailSender
from src.config.settings import Settings, get_settings
from src.domain.credentials import CredentialHasher
from src.domain.lockout import LockoutPolicy
from src.domain.ports import AccountRepository
from src.domain.throttle import ResendThrottle
from src.domain.tokens import TokenIssuer
from src.domain.verification import VerificationService

# Module-level singleton - ConsoleEmailSender is stateless
_email_sender = ConsoleEmailSender()


def get_pool(request: Request) -> ConnectionPool:
    """
    Get connection pool from app state.

    The pool is created during app lifespan startup and stored in app.state.
    """
    return request.app.state.pool


def get_repository(request: Request) -> AccountRepository:
    """Create repository with connection pool from app state."""
    pool = get_pool(request)
    return PostgresAccountRepository(pool)


def get_email_sender() -> ConsoleEmailSender:
    """Get console email sender (singleton)."""
    return _email_sender


def get_resend_throttle(request: Request) -> ResendThrottle:
    """Get the process-wide resend throttle created at startup."""
    return request.app.state.resend_throttle


def get_hashing_executor(request: Request) -> Executor:
    """Get the bounded executor that runs bcrypt-bound service calls."""
    return request.app.state.hashing_executor


def get_email_executor(request: Request) -> Executor:
    """Get the background executor for fire-and-forget email dispatch."""
    return request.app.state.email_executor


def build_verification_service(
    repository: AccountRepository,
    throttle: ResendThrottle,
    email_executor: Executor,
    settings: Settings,
) -> VerificationService:
    """Wire a VerificationService from settings."""
    return VerificationService(
        repository=repository,
        email_sender=get_email_sender(),
        throttle=throttle,
        email_executor=email_executor,
        hasher=CredentialHasher(cost=settings.bcrypt_cost),
        issuer=TokenIssuer(
            ttl=timedelta(seconds=settings.verification_token_ttl_seconds),
            display_code_length=settings.display_code_length,
            display_code_cost=settings.display_code_bcrypt_cost,
        ),
        lockout=LockoutPolicy(
            max_attempts=settings.max_verification_attempts,
            lock_duration=timedelta(minutes=settings.lockout_minutes),
        ),
    )


def get_verification_service(request: Request) -> VerificationService:
    """
    Create verification service with injected dependencies.

    Wires together the repository, email sender, throttle and
    executors for the domain service.
    """
    return build_verification_service(
        repository=get_repository(request),
        throttle=get_resend_throttle(request),
        email_executor=get_email_executor(request),
        settings=get_settings(),
    )


# HTTP BASIC AUTH security scheme for OpenAPI documentation
http_basic = HTTPBasic()


def get_basic_auth_credentials(
    credentials: HTTPBasicCredentials = Depends(http_basic),
) -> tuple[str, str]:
    """
    Extract and normalize credentials from HTTP BASIC AUTH header.

    FastAPI's HTTPBasic automatically:
    - Returns 401 for missing Authorization header
    - Returns 401 for malformed base64 encoding
    - Parses base64(email:password) format

    Args:
        credentials: HTTPBasicCredentials from FastAPI's HTTPBasic

    Returns:
        Tuple of (normalized_email, password)
        Email is stripped and lowercased for consistency.
    """
    email = credentials.username.strip().lower()
    password = credentials.password
    return email, password
