"""Attendance scan service.

Validates an attendance scan against the event's latest QR code, records
it, then runs the post-scan actions (certificate scheduling and the
attendee email). Post-scan actions are best-effort: their failure is logged
and never changes the scan response.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlmodel import Session, select

from medcerts.models.booking import SCANNABLE_BOOKING_STATUSES, BookingStatus
from medcerts.models.event import Event
from medcerts.models.notification import NotificationKind
from medcerts.models.qr_code import EventQRCode, QRCodeScan
from medcerts.models.user import User
from medcerts.services.bookings import find_active_booking
from medcerts.services.enqueue import (
    EnqueueOutcome,
    PostScanEmail,
    schedule_certificate_task,
    schedule_feedback_invites,
    select_post_scan_email,
)
from medcerts.services.notifications import queue_notification

logger = logging.getLogger(__name__)


class AttendanceError(Exception):
    """Scan rejected; status_code maps to the HTTP response."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


@dataclass
class ScanResult:
    """Outcome of an accepted scan."""

    message: str
    checked_in_at: datetime
    has_booking: bool
    duplicate: bool = False
    certificate_outcome: EnqueueOutcome | None = None
    post_scan_email: PostScanEmail | None = None


def get_latest_qr_code(session: Session, event_id: UUID) -> EventQRCode | None:
    """Get the most recently issued QR code for an event."""
    return session.exec(
        select(EventQRCode)
        .where(EventQRCode.event_id == event_id)
        .order_by(EventQRCode.created_at.desc())
    ).first()


def scanned_user_ids(session: Session, event_id: UUID) -> list[UUID]:
    """Distinct users with a successful scan of any QR code of the event."""
    rows = session.exec(
        select(QRCodeScan.user_id)
        .join(EventQRCode, EventQRCode.id == QRCodeScan.qr_code_id)
        .where(EventQRCode.event_id == event_id)
        .where(QRCodeScan.scan_success == True)  # noqa: E712
        .distinct()
    ).all()
    return list(rows)


def has_successful_scan(session: Session, event_id: UUID, user_id: UUID) -> bool:
    """Check whether the user has a successful scan for the event."""
    return session.exec(
        select(QRCodeScan.id)
        .join(EventQRCode, EventQRCode.id == QRCodeScan.qr_code_id)
        .where(EventQRCode.event_id == event_id)
        .where(QRCodeScan.user_id == user_id)
        .where(QRCodeScan.scan_success == True)  # noqa: E712
    ).first() is not None


def record_scan(
    session: Session,
    event_id: UUID,
    user: User,
    base_url: str,
    now: datetime | None = None,
) -> ScanResult:
    """Record an attendance scan for a user.

    Args:
        session: Database session
        event_id: Event encoded in the scanned QR code
        user: The scanning attendee
        base_url: Public base URL for links in attendee emails
        now: Current time (defaults to utcnow)

    Raises:
        AttendanceError: If the scan is not acceptable
    """
    now = now or datetime.utcnow()

    qr_code = get_latest_qr_code(session, event_id)
    if qr_code is None:
        raise AttendanceError("QR code not found", 404)
    if not qr_code.active:
        raise AttendanceError("QR code is inactive")
    if now < qr_code.scan_window_start:
        raise AttendanceError("QR code scanning is not yet active")
    if now > qr_code.scan_window_end:
        raise AttendanceError("QR code scanning has expired")

    event = session.get(Event, event_id)
    if event is None:
        raise AttendanceError("Event not found", 404)

    booking = find_active_booking(session, event_id, user.id)
    if booking is not None:
        if booking.checked_in:
            raise AttendanceError("Attendance already marked for this event")
        if booking.status not in SCANNABLE_BOOKING_STATUSES:
            raise AttendanceError("Booking status does not allow attendance marking")

    existing_scan = session.exec(
        select(QRCodeScan)
        .where(QRCodeScan.qr_code_id == qr_code.id)
        .where(QRCodeScan.user_id == user.id)
        .where(QRCodeScan.scan_success == True)  # noqa: E712
        .order_by(QRCodeScan.scanned_at.desc())
    ).first()
    if existing_scan is not None:
        return ScanResult(
            message="Attendance already marked for this event",
            checked_in_at=existing_scan.scanned_at,
            has_booking=booking is not None,
            duplicate=True,
        )

    if booking is not None:
        booking.checked_in = True
        booking.checked_in_at = now
        booking.status = BookingStatus.ATTENDED
        session.add(booking)

    session.add(QRCodeScan(
        qr_code_id=qr_code.id,
        user_id=user.id,
        booking_id=booking.id if booking else None,
        scanned_at=now,
        scan_success=True,
    ))
    session.commit()

    logger.info(
        "Attendance recorded",
        extra={"event_id": str(event_id), "user_id": str(user.id)},
    )

    result = ScanResult(
        message="Attendance marked successfully" if booking else "Attendance recorded successfully",
        checked_in_at=now,
        has_booking=booking is not None,
    )
    run_post_scan_actions(session, event, user, base_url, now, result)
    return result


def run_post_scan_actions(
    session: Session,
    event: Event,
    user: User,
    base_url: str,
    now: datetime,
    result: ScanResult,
) -> None:
    """Schedule the certificate and queue the post-scan email.

    Failures are logged and swallowed; the scan itself is already stored.
    """
    try:
        result.certificate_outcome = schedule_certificate_task(session, event, user.id, now)
    except Exception:
        session.rollback()
        logger.error(
            "Failed to schedule certificate task",
            extra={"event_id": str(event.id), "user_id": str(user.id)},
            exc_info=True,
        )

    try:
        email = select_post_scan_email(
            event, result.certificate_outcome or EnqueueOutcome.DISABLED
        )
        result.post_scan_email = email

        if email == PostScanEmail.FEEDBACK_REQUEST:
            queue_notification(session, NotificationKind.FEEDBACK_REQUEST, event, user, base_url)
            session.commit()
        elif email == PostScanEmail.THANK_YOU:
            queue_notification(session, NotificationKind.ATTENDANCE_THANK_YOU, event, user, base_url)
            session.commit()
        elif event.feedback_enabled and event.booking_enabled:
            schedule_feedback_invites(session, event, now)
    except Exception:
        session.rollback()
        logger.error(
            "Failed to queue post-scan email",
            extra={"event_id": str(event.id), "user_id": str(user.id)},
            exc_info=True,
        )
