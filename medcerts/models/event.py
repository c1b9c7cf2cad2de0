"""Event and certificate template entity models."""

from datetime import date as date_type, datetime, time
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class CertificateTemplate(SQLModel, table=True):
    """Certificate template database model."""

    __tablename__ = "certificate_templates"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(max_length=200)
    image_path: str | None = Field(default=None, max_length=500)
    fields: list[dict[str, Any]] | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Event(SQLModel, table=True):
    """Teaching event database model.

    Only the scheduling fields and the flags consumed by attendance,
    feedback and certificate automation are modelled.
    """

    __tablename__ = "events"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    title: str = Field(max_length=300)
    date: date_type | None = Field(default=None, index=True)
    start_time: time | None = Field(default=None)
    end_time: time | None = Field(default=None)

    auto_generate_certificate: bool = Field(default=False)
    certificate_template_id: UUID | None = Field(
        default=None, foreign_key="certificate_templates.id"
    )
    feedback_required_for_certificate: bool = Field(default=False)
    certificate_auto_send_email: bool = Field(default=True)
    feedback_enabled: bool = Field(default=False)
    booking_enabled: bool = Field(default=False)

    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def certificates_automated(self) -> bool:
        """Auto-generation is on and has a template to render."""
        return bool(self.auto_generate_certificate and self.certificate_template_id)
