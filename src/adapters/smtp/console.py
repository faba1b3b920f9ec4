"""
Console email sender adapter - Implements EmailSender protocol.

This module provides a console-based implementation of the domain's
email sender port, logging recovery tokens to stdout for demo purposes.
"""

import logging

logger = logging.getLogger(__name__)


class ConsoleEmailSender:
    """
    Implements EmailSender protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    For demo/development purposes - prints recovery tokens to stdout.
    """

    def send_recovery_link(self, email: str, token: str) -> None:
        """
        Log the recovery token to console (simulates email delivery).

        In production, this would be replaced with an SMTP adapter that
        mails a link carrying both the token and the email address.

        Args:
            email: Recipient email address (normalized by domain layer)
            token: Plaintext recovery token
        """
        logger.info("[RECOVERY] Email: %s Token: %s", email, token)
