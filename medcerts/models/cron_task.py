"""CronTask entity model: the persisted queue of scheduled work items."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


class CronTaskType(str, Enum):
    """Task families stored in the cron_tasks table."""
    CERTIFICATES_AUTO_GENERATE = "certificates_auto_generate"
    FEEDBACK_INVITES = "feedback_invites"


class CronTaskStatus(str, Enum):
    """Cron task status values.

    PROCESSING marks a task claimed by a running job invocation.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({CronTaskStatus.COMPLETED, CronTaskStatus.FAILED})

# Released stale claims are the only move back to PENDING.
ALLOWED_TRANSITIONS: dict[CronTaskStatus, frozenset[CronTaskStatus]] = {
    CronTaskStatus.PENDING: frozenset({
        CronTaskStatus.PROCESSING,
        CronTaskStatus.COMPLETED,
        CronTaskStatus.FAILED,
    }),
    CronTaskStatus.PROCESSING: frozenset({
        CronTaskStatus.COMPLETED,
        CronTaskStatus.FAILED,
        CronTaskStatus.PENDING,
    }),
    CronTaskStatus.COMPLETED: frozenset(),
    CronTaskStatus.FAILED: frozenset(),
}


class InvalidTaskTransition(Exception):
    """Raised when a task is moved along an edge the state machine forbids."""

    def __init__(self, task_id: UUID, current: CronTaskStatus, target: CronTaskStatus) -> None:
        self.task_id = task_id
        self.current = current
        self.target = target
        super().__init__(
            f"Cron task {task_id} cannot move from {current.value} to {target.value}"
        )


class CronTask(SQLModel, table=True):
    """Cron task database model."""

    __tablename__ = "cron_tasks"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    task_type: CronTaskType = Field(index=True)
    event_id: UUID = Field(foreign_key="events.id", index=True)
    # NULL user_id marks a fan-out task covering every attendee of the event
    user_id: UUID | None = Field(default=None, foreign_key="users.id", index=True)
    idempotency_key: str = Field(max_length=255, unique=True, index=True)
    status: CronTaskStatus = Field(default=CronTaskStatus.PENDING, index=True)
    run_at: datetime = Field(index=True)
    claimed_at: datetime | None = Field(default=None)
    processed_at: datetime | None = Field(default=None)
    error_message: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_fan_out(self) -> bool:
        return self.user_id is None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def move_to(
        self,
        status: CronTaskStatus,
        now: datetime | None = None,
        error: str | None = None,
    ) -> None:
        """Apply a status transition.

        Args:
            status: Target status
            now: Transition timestamp (defaults to utcnow)
            error: Diagnostic text, stored only when moving to FAILED

        Raises:
            InvalidTaskTransition: If the edge is not in ALLOWED_TRANSITIONS
        """
        current = CronTaskStatus(self.status)
        if status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTaskTransition(self.id, current, status)

        now = now or datetime.utcnow()
        self.status = status

        if status == CronTaskStatus.PROCESSING:
            self.claimed_at = now
        elif status == CronTaskStatus.PENDING:
            self.claimed_at = None
        else:
            self.processed_at = now
            self.error_message = error if status == CronTaskStatus.FAILED else None
