"""Feedback submission service.

For feedback-gated events the certificate is generated right here,
in-process, instead of through a scheduled cron task.
"""

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlmodel import Session

from medcerts.models.certificate import GenerationRequest
from medcerts.models.event import Event
from medcerts.models.feedback import FeedbackResponse
from medcerts.models.user import User
from medcerts.services.attendance import has_successful_scan
from medcerts.services.bookings import get_or_create_booking
from medcerts.services.certificates import CertificateGenerationError, CertificateService

logger = logging.getLogger(__name__)


class FeedbackError(Exception):
    """Submission rejected; status_code maps to the HTTP response."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass
class FeedbackResult:
    """Outcome of a feedback submission."""

    feedback_response_id: UUID
    auto_certificate_generated: bool


def submit_feedback(
    session: Session,
    certificates: CertificateService,
    event_id: UUID,
    user: User,
    responses: dict[str, Any],
) -> FeedbackResult:
    """Store feedback and trigger certificate generation when gated on it.

    Raises:
        FeedbackError: If the event is unknown or the user did not attend
    """
    event = session.get(Event, event_id)
    if event is None:
        raise FeedbackError("Event not found", 404)

    if not responses:
        raise FeedbackError("Feedback responses are required")

    # Staff may submit without scanning, for testing forms
    if not user.is_privileged and not has_successful_scan(session, event_id, user.id):
        raise FeedbackError(
            "Attendance not found for this event. Please scan the QR code first."
        )

    booking = get_or_create_booking(session, event_id, user.id, reason="feedback_submission")
    if booking is None:
        raise FeedbackError("Failed to save feedback response", 500)

    feedback = FeedbackResponse(
        event_id=event_id,
        user_id=user.id,
        booking_id=booking.id,
        responses=responses,
    )
    booking.feedback_completed = True
    session.add(feedback)
    session.add(booking)
    session.commit()
    session.refresh(feedback)

    logger.info(
        "Feedback submitted",
        extra={"event_id": str(event_id), "user_id": str(user.id)},
    )

    generated = False
    if event.certificates_automated and event.feedback_required_for_certificate:
        generated = _generate_after_feedback(session, certificates, event, user, booking.id)

    return FeedbackResult(
        feedback_response_id=feedback.id,
        auto_certificate_generated=generated,
    )


def _generate_after_feedback(
    session: Session,
    certificates: CertificateService,
    event: Event,
    user: User,
    booking_id: UUID,
) -> bool:
    """Generate the certificate directly; failures never fail the submission."""
    request = GenerationRequest(
        event_id=event.id,
        user_id=user.id,
        booking_id=booking_id,
        template_id=event.certificate_template_id,
        send_email=event.certificate_auto_send_email,
    )
    try:
        certificates.generate(session, request)
    except CertificateGenerationError as e:
        logger.warning(
            "Certificate not generated after feedback",
            extra={"event_id": str(event.id), "user_id": str(user.id), "reason": e.message},
        )
        return False
    except Exception:
        session.rollback()
        logger.error(
            "Certificate generation after feedback failed",
            extra={"event_id": str(event.id), "user_id": str(user.id)},
            exc_info=True,
        )
        return False

    return True
