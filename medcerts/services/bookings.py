"""Booking lookups shared by attendance, feedback and certificate flows."""

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from medcerts.models.audit_log import AuditLog
from medcerts.models.booking import Booking, BookingStatus

logger = logging.getLogger(__name__)


def find_active_booking(session: Session, event_id: UUID, user_id: UUID) -> Booking | None:
    """Get the user's non-cancelled booking for an event."""
    return session.exec(
        select(Booking)
        .where(Booking.event_id == event_id)
        .where(Booking.user_id == user_id)
        .where(Booking.status != BookingStatus.CANCELLED)
        .order_by(Booking.created_at.desc())
    ).first()


def create_attended_booking(
    session: Session,
    event_id: UUID,
    user_id: UUID,
    reason: str,
) -> Booking | None:
    """Synthesize an attended, checked-in booking for an attendee.

    The booking and its audit record are committed together.

    Returns:
        The new booking, or None if it could not be stored
    """
    now = datetime.utcnow()
    booking = Booking(
        event_id=event_id,
        user_id=user_id,
        status=BookingStatus.ATTENDED,
        checked_in=True,
        checked_in_at=now,
    )
    session.add(booking)
    session.add(AuditLog(
        user_id=None,
        action="booking.synthesized",
        entity_type="booking",
        entity_id=booking.id,
        details={"event_id": str(event_id), "user_id": str(user_id), "reason": reason},
    ))
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.error(
            "Failed to synthesize booking",
            extra={"event_id": str(event_id), "user_id": str(user_id)},
            exc_info=True,
        )
        return None

    session.refresh(booking)
    return booking


def get_or_create_booking(
    session: Session,
    event_id: UUID,
    user_id: UUID,
    reason: str,
) -> Booking | None:
    """Reuse the active booking or synthesize one."""
    booking = find_active_booking(session, event_id, user_id)
    if booking is not None:
        return booking
    return create_attended_booking(session, event_id, user_id, reason)
