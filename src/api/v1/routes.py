"""
API v1 routes.

Defines REST endpoints for registration, email verification, resend
and credential checks. Domain calls run on the hashing executor.
"""

from concurrent.futures import Executor

from fastapi import APIRouter, Depends, HTTPException, status

from src.api.concurrency import run_blocking
from src.api.dependencies import (
    get_basic_auth_credentials,
    get_hashing_executor,
    get_verification_service,
)
from src.api.models import (
    ChangePasswordRequest,
    ErrorDetail,
    ErrorResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResendRequest,
    ResendResponse,
    SignInResponse,
    VerificationStatusResponse,
    VerifyEmailRequest,
    VerifyEmailResponse,
)
from src.config.settings import get_settings
from src.domain.exceptions import EmailAlreadyRegistered, InvalidCredentials, TokenIssueFailed
from src.domain.ports import VerifyError
from src.domain.verification import VerificationService

router = APIRouter(tags=["v1"])


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid credentials",
        headers={"WWW-Authenticate": "Basic"},
    )


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"model": ErrorResponse, "description": "Email already registered"},
        422: {"description": "Validation error"},
        500: {"model": ErrorResponse, "description": "Verification token could not be issued"},
    },
    summary="Register a new user",
    description="Submit email and password to create an unverified account. "
    "A verification link and an 8-character code will be sent to the provided email.",
)
async def register(
    request_data: RegisterRequest,
    service: VerificationService = Depends(get_verification_service),
    executor: Executor = Depends(get_hashing_executor),
) -> RegisterResponse:
    """
    Register a new user and send the verification email.

    - **email**: Valid email address to register
    - **password**: Password (minimum 8 characters)
    - **language**: Optional email language (en, fr)
    """
    try:
        registration = await run_blocking(
            executor,
            service.register,
            request_data.email,
            request_data.password,
            name=request_data.name,
            locale=request_data.language,
        )
    except EmailAlreadyRegistered:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Registration failed",
        ) from None
    except TokenIssueFailed:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Registration failed",
        ) from None
    return RegisterResponse(
        message="Verification email sent",
        email=registration.account.email,
        expires_in_seconds=get_settings().verification_token_ttl_seconds,
    )


@router.post(
    "/verify-email",
    response_model=VerifyEmailResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid or expired token"},
        429: {"model": ErrorResponse, "description": "Too many failed attempts"},
        500: {"model": ErrorResponse, "description": "Verification failed"},
        422: {"description": "Validation error"},
    },
    summary="Verify email with token or code",
    description="Submit the token from the verification link, or the 8-character code "
    "together with the email it was sent to.",
)
async def verify_email(
    request_data: VerifyEmailRequest,
    service: VerificationService = Depends(get_verification_service),
    executor: Executor = Depends(get_hashing_executor),
) -> VerifyEmailResponse:
    """
    Verify an email address.

    - **token**: Full token or 8-character display code (case-insensitive)
    - **email**: Required when submitting the display code
    """
    outcome = await run_blocking(executor, service.verify, request_data.token, request_data.email)

    if outcome.ok:
        return VerifyEmailResponse(message=outcome.message, email=outcome.email)

    if outcome.error == VerifyError.RATE_LIMIT:
        retry_after = (outcome.minutes_remaining or 1) * 60
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=ErrorDetail(
                error=outcome.error.value,
                message=outcome.message,
                retry_after_seconds=retry_after,
            ).model_dump(),
            headers={"Retry-After": str(retry_after)},
        )

    if outcome.error == VerifyError.INTERNAL_ERROR:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=ErrorDetail(error=outcome.error.value, message=outcome.message).model_dump(
                exclude_none=True
            ),
        )

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=ErrorDetail(
            error=VerifyError.INVALID_TOKEN.value, message=outcome.message
        ).model_dump(exclude_none=True),
    )


@router.post(
    "/resend-verification-email",
    response_model=ResendResponse,
    responses={
        429: {"model": ErrorResponse, "description": "Resend limit reached"},
        422: {"description": "Validation error"},
    },
    summary="Resend the verification email",
    description="Issue a fresh verification token. The response is the same whether "
    "or not an account exists for the email.",
)
async def resend_verification_email(
    request_data: ResendRequest,
    service: VerificationService = Depends(get_verification_service),
    executor: Executor = Depends(get_hashing_executor),
) -> ResendResponse:
    """
    Resend the verification email.

    Limited to 3 per hour and 10 per day per email address.
    """
    outcome = await run_blocking(executor, service.resend, request_data.email)

    if not outcome.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=ErrorDetail(
                error=VerifyError.RATE_LIMIT.value,
                message=outcome.message,
                retry_after_seconds=outcome.retry_after_seconds,
            ).model_dump(),
            headers={"Retry-After": str(outcome.retry_after_seconds)},
        )

    return ResendResponse(message=outcome.message)


@router.post(
    "/sign-in",
    response_model=SignInResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid credentials"}},
    summary="Sign in with email and password",
    description="Credentials via HTTP BASIC AUTH. Legacy password hashes are "
    "upgraded to bcrypt on success.",
)
async def sign_in(
    credentials: tuple[str, str] = Depends(get_basic_auth_credentials),
    service: VerificationService = Depends(get_verification_service),
    executor: Executor = Depends(get_hashing_executor),
) -> SignInResponse:
    """Authenticate and report whether the email is verified."""
    email, password = credentials
    try:
        account = await run_blocking(executor, service.sign_in, email, password)
    except InvalidCredentials:
        raise _invalid_credentials() from None
    return SignInResponse(
        message="Signed in",
        email=account.email,
        email_verified=account.email_verified,
    )


@router.get(
    "/verification-status",
    response_model=VerificationStatusResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid credentials"}},
    summary="Get verification status",
    description="Precise verification and lockout state for the authenticated caller.",
)
async def verification_status(
    credentials: tuple[str, str] = Depends(get_basic_auth_credentials),
    service: VerificationService = Depends(get_verification_service),
    executor: Executor = Depends(get_hashing_executor),
) -> VerificationStatusResponse:
    """Report email_verified and lock state for the caller's own account."""
    email, password = credentials
    try:
        status_ = await run_blocking(executor, service.verification_status, email, password)
    except InvalidCredentials:
        raise _invalid_credentials() from None
    return VerificationStatusResponse(
        email=status_.email,
        email_verified=status_.email_verified,
        is_locked=status_.is_locked,
        minutes_remaining=status_.minutes_remaining,
    )


@router.post(
    "/change-password",
    response_model=MessageResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        422: {"description": "Validation error"},
    },
    summary="Change password",
    description="Current credentials via HTTP BASIC AUTH, new password in the body.",
)
async def change_password(
    request_data: ChangePasswordRequest,
    credentials: tuple[str, str] = Depends(get_basic_auth_credentials),
    service: VerificationService = Depends(get_verification_service),
    executor: Executor = Depends(get_hashing_executor),
) -> MessageResponse:
    """Replace the caller's password."""
    email, password = credentials
    try:
        await run_blocking(
            executor, service.change_password, email, password, request_data.new_password
        )
    except InvalidCredentials:
        raise _invalid_credentials() from None
    return MessageResponse(message="Password changed successfully")
