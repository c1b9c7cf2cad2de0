"""Outbound email delivery.

Delivery is simulated (logged) until a mail provider is wired in; callers
only depend on EmailSender.send raising on failure.
"""

import logging
from abc import ABC, abstractmethod
from functools import lru_cache

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """Raised when an email could not be handed to the provider."""


class EmailSender(ABC):
    """Interface for sending a single email."""

    @abstractmethod
    def send(self, recipient: str, subject: str, body: str) -> None:
        """Send an email.

        Raises:
            EmailDeliveryError: If delivery fails
        """


class SimulatedEmailSender(EmailSender):
    """Logs emails instead of delivering them."""

    def send(self, recipient: str, subject: str, body: str) -> None:
        logger.info(
            "[SIMULATED] Sending email",
            extra={"recipient": recipient, "subject": subject},
        )


@lru_cache
def get_email_sender() -> EmailSender:
    """Get the process-wide email sender."""
    return SimulatedEmailSender()
