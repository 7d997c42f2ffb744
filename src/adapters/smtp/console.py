"""
Console email sender adapter - Implements EmailSender protocol.

This module provides a console-based implementation of the domain's
email sender port, logging verification codes to stdout for demo purposes.
"""

import logging

logger = logging.getLogger(__name__)

_SUBJECTS = {
    "en": "Verify Your Email",
    "fr": "Vérifiez votre adresse e-mail",
}


def mask_email(email: str) -> str:
    """Keep the first two characters of the local part: jo***@example.com"""
    local, _, domain = email.partition("@")
    return f"{local[:2]}***@{domain}"


class ConsoleEmailSender:
    """
    Implements EmailSender protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    For demo/development purposes - prints verification codes to stdout.
    """

    def send_verification_email(
        self, recipient: str, token: str, display_code: str, locale: str
    ) -> None:
        """
        Log verification code to console (simulates email delivery).

        In production, this would be replaced with an SMTP adapter.
        The code is logged at INFO level to be visible in docker-compose logs.

        Args:
            recipient: Recipient email address (normalized by domain layer)
            token: Raw verification token for the link form
            display_code: 8-character code for manual entry
            locale: "en" or "fr"; anything else falls back to "en"
        """
        subject = _SUBJECTS.get(locale, _SUBJECTS["en"])
        logger.info(
            "[VERIFICATION] Email: %s Subject: %s Code: %s Token: %s",
            mask_email(recipient),
            subject,
            display_code,
            token,
        )
