"""Booking (attendance record) entity model."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


class BookingStatus(str, Enum):
    """Booking status values."""
    CONFIRMED = "confirmed"
    WAITLIST = "waitlist"
    ATTENDED = "attended"
    CANCELLED = "cancelled"


# Statuses a scan may move to ATTENDED
SCANNABLE_BOOKING_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.WAITLIST})


class Booking(SQLModel, table=True):
    """Event booking database model."""

    __tablename__ = "event_bookings"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    event_id: UUID = Field(foreign_key="events.id", index=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    status: BookingStatus = Field(default=BookingStatus.CONFIRMED)
    checked_in: bool = Field(default=False)
    checked_in_at: datetime | None = Field(default=None)
    feedback_completed: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)
