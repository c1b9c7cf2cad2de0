"""User entity model."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

# Roles allowed to submit feedback without a recorded attendance scan
PRIVILEGED_ROLES = frozenset({"admin", "meded_team", "ctf"})


class User(SQLModel, table=True):
    """User database model.

    Accounts are owned by the external auth provider; this table only
    mirrors what the certificate pipeline reads.
    """

    __tablename__ = "users"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(max_length=255, unique=True, index=True)
    name: str | None = Field(default=None, max_length=200)
    role: str = Field(default="student", max_length=50)
    university: str | None = Field(default=None, max_length=200)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    @property
    def display_name(self) -> str:
        return self.name or self.email.split("@")[0] or "Participant"
