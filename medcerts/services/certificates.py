"""Certificate generation service.

Implements the generation capability called by the certificate job (over
HTTP) and by feedback submission (in-process). A certificate is created at
most once per (event, user); the existence check here is backed by the
unique constraint on the certificates table.
"""

import logging
import secrets
import string
import time
from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from medcerts.models.audit_log import AuditLog
from medcerts.models.booking import Booking
from medcerts.models.certificate import Certificate, GenerationRequest
from medcerts.models.event import CertificateTemplate, Event
from medcerts.models.user import User
from medcerts.services.email import EmailSender
from medcerts.services.rendering import CertificateRenderer

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_uppercase + string.digits
_BASE36_DIGITS = string.digits + string.ascii_uppercase


class CertificateGenerationError(Exception):
    """Generation refused or failed; status_code maps to the HTTP response."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class CertificateExistsError(CertificateGenerationError):
    """A certificate for this event and user is already recorded."""

    def __init__(self) -> None:
        super().__init__("Certificate already exists for this user and event", 409)


def generate_certificate_id() -> str:
    """Generate a human-friendly certificate reference, e.g. CERT-M1Q2X3Y4-7KD9QZ.

    The middle part is the creation time in milliseconds, base 36.
    """
    millis = int(time.time() * 1000)
    stamp = ""
    while millis:
        millis, rem = divmod(millis, 36)
        stamp = _BASE36_DIGITS[rem] + stamp
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"CERT-{stamp}-{suffix}"


def certificate_exists(session: Session, event_id: UUID, user_id: UUID) -> bool:
    """Check whether a certificate is already recorded for (event, user)."""
    return session.exec(
        select(Certificate.id)
        .where(Certificate.event_id == event_id)
        .where(Certificate.user_id == user_id)
    ).first() is not None


def _format_date(value: date | None) -> str:
    if value is None:
        return ""
    return f"{value.day} {value.strftime('%B %Y')}"


def build_certificate_data(
    certificate_id: UUID,
    friendly_id: str,
    event: Event,
    user: User,
) -> dict[str, Any]:
    """Collect the values placed on a certificate template."""
    start = event.start_time.strftime("%H:%M") if event.start_time else ""
    end = event.end_time.strftime("%H:%M") if event.end_time else ""
    return {
        "certificate_id": friendly_id,
        "event_id": str(event.id),
        "record_id": str(certificate_id),
        "attendee_name": user.display_name,
        "attendee_email": user.email,
        "attendee_university": user.university or "",
        "attendee_role": user.role or "",
        "event_title": event.title,
        "event_date": _format_date(event.date),
        "event_start_time": start,
        "event_end_time": end,
        "event_duration": " - ".join(part for part in (start, end) if part),
        "certificate_date": _format_date(datetime.utcnow()),
        "generator_name": "Auto_Generator",
    }


class CertificateService:
    """Generates, records and optionally emails certificates."""

    def __init__(self, renderer: CertificateRenderer, email_sender: EmailSender) -> None:
        self.renderer = renderer
        self.email_sender = email_sender

    def generate(
        self,
        session: Session,
        request: GenerationRequest,
        generated_by: UUID | None = None,
    ) -> Certificate:
        """Generate a certificate for one attendee.

        Args:
            session: Database session
            request: Event, user, booking and template references
            generated_by: Acting user, None for automated callers

        Returns:
            The recorded Certificate

        Raises:
            CertificateGenerationError: If a precondition fails
            CertificateExistsError: If the attendee already has a certificate
        """
        user = session.get(User, request.user_id)
        if user is None:
            raise CertificateGenerationError("User not found", 404)

        event = session.get(Event, request.event_id)
        if event is None:
            raise CertificateGenerationError("Event not found", 404)

        booking = session.exec(
            select(Booking)
            .where(Booking.id == request.booking_id)
            .where(Booking.user_id == request.user_id)
            .where(Booking.event_id == request.event_id)
        ).first()
        if booking is None:
            raise CertificateGenerationError("Booking not found", 404)

        if not booking.checked_in:
            raise CertificateGenerationError(
                "User must attend the event before certificate generation"
            )
        if event.feedback_required_for_certificate and not booking.feedback_completed:
            raise CertificateGenerationError(
                "User must complete feedback before certificate generation"
            )

        if certificate_exists(session, event.id, user.id):
            raise CertificateExistsError()

        template = session.get(CertificateTemplate, request.template_id)
        if template is None:
            raise CertificateGenerationError("Certificate template not found", 404)

        certificate_id = uuid4()
        friendly_id = generate_certificate_id()
        data = build_certificate_data(certificate_id, friendly_id, event, user)
        path = self.renderer.render(template, data)

        certificate = Certificate(
            id=certificate_id,
            event_id=event.id,
            user_id=user.id,
            booking_id=booking.id,
            template_id=template.id,
            friendly_id=friendly_id,
            certificate_url=path,
            certificate_data=data,
            generated_by=generated_by,
        )
        session.add(certificate)
        session.add(AuditLog(
            user_id=generated_by,
            action="certificate.generated",
            entity_type="certificate",
            entity_id=certificate_id,
            details={
                "event_id": str(event.id),
                "user_id": str(user.id),
                "friendly_id": friendly_id,
            },
        ))
        try:
            session.commit()
        except IntegrityError:
            # Lost a race against another generation for the same pair
            session.rollback()
            self.renderer.discard(path)
            raise CertificateExistsError()

        logger.info(
            "Certificate generated",
            extra={
                "certificate_id": str(certificate_id),
                "friendly_id": friendly_id,
                "event_id": str(event.id),
                "user_id": str(user.id),
            },
        )

        if request.send_email:
            self._send_certificate_email(session, certificate, event, user)

        session.refresh(certificate)
        return certificate

    def _send_certificate_email(
        self,
        session: Session,
        certificate: Certificate,
        event: Event,
        user: User,
    ) -> None:
        """Email the certificate; failure is recorded, never raised."""
        subject = f"Your certificate for {event.title[:150]}"
        body = (
            f"Hi {user.display_name},\n\n"
            f"Your certificate {certificate.friendly_id} for {event.title} is ready.\n"
            f"Download: {certificate.certificate_url}\n"
        )
        try:
            self.email_sender.send(user.email, subject, body)
        except Exception as e:
            certificate.email_error_message = str(e)[:500]
            session.add(certificate)
            session.add(AuditLog(
                user_id=None,
                action="certificate.email_failed",
                entity_type="certificate",
                entity_id=certificate.id,
                details={"error": str(e)[:500]},
            ))
            session.commit()
            logger.error(
                "Certificate email failed",
                extra={"certificate_id": str(certificate.id), "error": str(e)},
                exc_info=True,
            )
            return

        certificate.sent_via_email = True
        certificate.email_sent_at = datetime.utcnow()
        certificate.email_error_message = None
        session.add(certificate)
        session.commit()
