"""Certificate entity model."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import Column, Field, SQLModel


class Certificate(SQLModel, table=True):
    """Generated certificate database model.

    One row per (event, user): the unique constraint backs the
    application-level existence checks.
    """

    __tablename__ = "certificates"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_certificates_event_user"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    event_id: UUID = Field(foreign_key="events.id", index=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    booking_id: UUID | None = Field(default=None, foreign_key="event_bookings.id")
    template_id: UUID = Field(foreign_key="certificate_templates.id")
    friendly_id: str = Field(max_length=40, index=True)
    certificate_url: str = Field(max_length=500)
    certificate_data: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    generated_by: UUID | None = Field(default=None)
    sent_via_email: bool = Field(default=False)
    email_sent_at: datetime | None = Field(default=None)
    email_error_message: str | None = Field(default=None)


class GenerationRequest(BaseModel):
    """Payload of the certificate generation capability."""

    event_id: UUID = PydanticField(alias="eventId")
    user_id: UUID = PydanticField(alias="userId")
    booking_id: UUID = PydanticField(alias="bookingId")
    template_id: UUID = PydanticField(alias="templateId")
    send_email: bool = PydanticField(default=True, alias="sendEmail")

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """Serialize with the camelCase wire names."""
        return self.model_dump(mode="json", by_alias=True)


class CertificateResponse(SQLModel):
    """Schema for generated certificate response."""

    success: bool = True
    id: UUID
    friendly_id: str
    event_id: UUID
    user_id: UUID
    certificate_url: str
    sent_via_email: bool
    email_error_message: str | None = None

    model_config = {"from_attributes": True}
