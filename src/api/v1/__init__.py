"""
API v1 package.

Contains versioned routes for registration, email verification,
resend and credential checks.
"""

from src.api.v1.routes import router

__all__ = ["router"]
