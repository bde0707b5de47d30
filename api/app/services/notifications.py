"""Survey notification delivery.

The engine hands each recipient's survey link to a `NotificationDispatcher`
and records the outcome; it never talks to a mail server itself.
"""
import enum
import logging
from datetime import date
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class DeliveryStatus(str, enum.Enum):
    """Outcome of a single notification attempt."""
    DELIVERED = "delivered"
    FAILED = "failed"


class NotificationDispatcher(Protocol):
    def send(
        self,
        recipient_email: str,
        survey_url: str,
        due_date: date,
        timeout: Optional[float] = None,
    ) -> DeliveryStatus:
        """Deliver one survey invitation. May raise; callers record failures."""
        ...


def build_survey_message(survey_url: str, due_date: date) -> tuple[str, str]:
    """Subject and plain-text body of a survey invitation."""
    subject = "Compliance Survey Required"
    body = (
        "You have been selected to complete a compliance survey for your department.\n\n"
        f"Please complete it by {due_date.isoformat()}:\n{survey_url}\n\n"
        "The survey link is personal. Do not forward it."
    )
    return subject, body


class LoggingNotificationDispatcher:
    """Dispatcher that writes invitations to the application log.

    Used when no mail gateway is configured (development, tests).
    """

    def send(
        self,
        recipient_email: str,
        survey_url: str,
        due_date: date,
        timeout: Optional[float] = None,
    ) -> DeliveryStatus:
        subject, _body = build_survey_message(survey_url, due_date)
        logger.info(
            "Survey notification to %s: %s (due %s) %s",
            recipient_email, subject, due_date.isoformat(), survey_url
        )
        return DeliveryStatus.DELIVERED
