"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
"""

from pydantic import BaseModel, EmailStr, Field, field_validator

from src.domain.credentials import BCRYPT_MAX_PASSWORD_BYTES


def _check_password_bytes(value: str) -> str:
    if len(value.encode()) > BCRYPT_MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes")
    return value


class RegisterRequest(BaseModel):
    """Request model for user registration."""

    email: EmailStr
    password: str = Field(..., min_length=8, description="User password (min 8 characters)")
    name: str | None = Field(default=None, max_length=255)
    language: str | None = Field(
        default=None, max_length=8, description="Email language: en (default) or fr"
    )

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class RegisterResponse(BaseModel):
    """Response model for successful registration."""

    message: str
    email: str
    expires_in_seconds: int


class VerifyEmailRequest(BaseModel):
    """Request model for email verification."""

    token: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Verification token from the email link, or the 8-character code",
    )
    email: EmailStr | None = Field(
        default=None, description="Email the code was sent to (required for the short code)"
    )


class VerifyEmailResponse(BaseModel):
    """Response model for successful verification."""

    message: str
    email: str | None


class ResendRequest(BaseModel):
    """Request model for resending the verification email."""

    email: EmailStr


class ResendResponse(BaseModel):
    """Response model for a resend request. Identical whether or not the email exists."""

    message: str


class SignInResponse(BaseModel):
    """Response model for a successful sign-in."""

    message: str
    email: str
    email_verified: bool


class VerificationStatusResponse(BaseModel):
    """Verification state for the authenticated caller."""

    email: str
    email_verified: bool
    is_locked: bool
    minutes_remaining: int


class ChangePasswordRequest(BaseModel):
    """Request model for a password change."""

    new_password: str = Field(..., min_length=8, description="New password (min 8 characters)")

    @field_validator("new_password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class MessageResponse(BaseModel):
    """Plain message response."""

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error body for verification and throttling failures."""

    error: str
    message: str
    retry_after_seconds: int | None = None


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str | ErrorDetail
