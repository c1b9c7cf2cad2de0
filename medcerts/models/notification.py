"""NotificationDelivery entity model for fire-and-forget attendee emails."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


class NotificationKind(str, Enum):
    """Attendee emails dispatched outside the certificate pipeline."""
    FEEDBACK_REQUEST = "feedback_request"
    ATTENDANCE_THANK_YOU = "attendance_thank_you"


class DeliveryStatus(str, Enum):
    """Notification delivery status.

    PROCESSING marks a delivery picked up by the notification worker.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class NotificationDelivery(SQLModel, table=True):
    """Notification delivery database model with retry tracking."""

    __tablename__ = "notification_deliveries"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    event_id: UUID | None = Field(default=None, foreign_key="events.id", index=True)
    kind: NotificationKind
    recipient: str = Field(max_length=255)
    subject: str | None = Field(default=None, max_length=200)
    message: str
    status: DeliveryStatus = Field(default=DeliveryStatus.PENDING, index=True)
    sent_at: datetime | None = Field(default=None)
    error_message: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    retry_count: int = Field(default=0)
    next_retry_at: datetime | None = Field(default=None, index=True)
