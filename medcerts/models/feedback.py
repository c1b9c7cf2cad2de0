"""FeedbackResponse entity model."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class FeedbackResponse(SQLModel, table=True):
    """Submitted post-event feedback."""

    __tablename__ = "feedback_responses"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    event_id: UUID = Field(foreign_key="events.id", index=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    booking_id: UUID | None = Field(default=None, foreign_key="event_bookings.id")
    responses: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    completed_at: datetime = Field(default_factory=datetime.utcnow)


class FeedbackSubmit(BaseModel):
    """Schema for feedback submission."""

    event_id: UUID = PydanticField(alias="eventId")
    responses: dict[str, Any]

    model_config = ConfigDict(populate_by_name=True)


class FeedbackSubmitResponse(SQLModel):
    """Schema for feedback submission response."""

    success: bool = True
    feedback_response_id: UUID
    auto_certificate_generated: bool
