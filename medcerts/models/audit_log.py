"""AuditLog entity model for operator-facing activity records."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class AuditLog(SQLModel, table=True):
    """Audit log database model for immutable activity records."""

    __tablename__ = "audit_logs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    # NULL for actions taken by background jobs
    user_id: UUID | None = Field(default=None, foreign_key="users.id", index=True)
    action: str = Field(max_length=50, index=True)
    entity_type: str = Field(max_length=50, index=True)
    entity_id: UUID | None = Field(default=None, index=True)
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    timestamp: datetime = Field(default_factory=datetime.utcnow, index=True)
