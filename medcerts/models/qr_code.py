"""Attendance QR code and scan entity models."""

from datetime import datetime
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlmodel import Field, SQLModel


class EventQRCode(SQLModel, table=True):
    """Attendance QR code issued for an event."""

    __tablename__ = "event_qr_codes"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    event_id: UUID = Field(foreign_key="events.id", index=True)
    active: bool = Field(default=True)
    scan_window_start: datetime
    scan_window_end: datetime
    created_at: datetime = Field(default_factory=datetime.utcnow)


class QRCodeScan(SQLModel, table=True):
    """A single attendance scan of an event QR code."""

    __tablename__ = "qr_code_scans"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    qr_code_id: UUID = Field(foreign_key="event_qr_codes.id", index=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    booking_id: UUID | None = Field(default=None, foreign_key="event_bookings.id")
    scanned_at: datetime = Field(default_factory=datetime.utcnow)
    scan_success: bool = Field(default=True)


class ScanRequest(BaseModel):
    """Schema for an attendance scan."""

    event_id: UUID = PydanticField(alias="eventId")

    model_config = ConfigDict(populate_by_name=True)


class ScanResponse(SQLModel):
    """Schema for attendance scan response."""

    success: bool = True
    message: str
    checked_in_at: datetime
    has_booking: bool
    duplicate: bool = False
    certificate_scheduled: bool = False
