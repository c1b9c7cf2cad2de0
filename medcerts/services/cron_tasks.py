"""Cron task store: idempotent scheduling and claiming of queued work.

Every write that can race with another trigger path relies on the unique
idempotency_key column. A duplicate-key insert is reported as "already
scheduled", never as an error.
"""

import logging
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from medcerts.models.cron_task import TERMINAL_STATUSES, CronTask, CronTaskStatus, CronTaskType

logger = logging.getLogger(__name__)

# User component of the key for fan-out tasks
FAN_OUT_KEY_USER = "all"
UNDATED_KEY_DATE = "undated"


def build_idempotency_key(
    task_type: CronTaskType,
    event_id: UUID,
    user_id: UUID | None,
    event_date: date | None,
) -> str:
    """Compose the deterministic key for one logical unit of work.

    Example: ``certificates_auto_generate|<event>|<user>|2025-03-14``
    """
    user_part = str(user_id) if user_id is not None else FAN_OUT_KEY_USER
    date_part = event_date.isoformat() if event_date is not None else UNDATED_KEY_DATE
    return f"{task_type.value}|{event_id}|{user_part}|{date_part}"


def get_task_by_key(session: Session, idempotency_key: str) -> CronTask | None:
    """Get a task by its idempotency key."""
    return session.exec(
        select(CronTask).where(CronTask.idempotency_key == idempotency_key)
    ).first()


def create_task(
    session: Session,
    task_type: CronTaskType,
    event_id: UUID,
    user_id: UUID | None,
    run_at: datetime,
    idempotency_key: str,
    status: CronTaskStatus = CronTaskStatus.PENDING,
    processed_at: datetime | None = None,
) -> CronTask | None:
    """Insert a task unless one with the same key already exists.

    The insert is committed on its own so that a duplicate-key failure
    only rolls back this row.

    Returns:
        The created task, or None when the key was already taken
    """
    if get_task_by_key(session, idempotency_key) is not None:
        return None

    task = CronTask(
        task_type=task_type,
        event_id=event_id,
        user_id=user_id,
        status=status,
        run_at=run_at,
        processed_at=processed_at,
        idempotency_key=idempotency_key,
    )
    session.add(task)
    try:
        session.commit()
    except IntegrityError:
        # Concurrent insert won the race for this key
        session.rollback()
        logger.debug(
            "Cron task already scheduled",
            extra={"idempotency_key": idempotency_key},
        )
        return None

    session.refresh(task)
    return task


def fetch_due_tasks(
    session: Session,
    task_type: CronTaskType,
    now: datetime,
    limit: int,
) -> list[CronTask]:
    """Fetch pending tasks whose run_at has passed, oldest first."""
    tasks = session.exec(
        select(CronTask)
        .where(CronTask.task_type == task_type)
        .where(CronTask.status == CronTaskStatus.PENDING)
        .where(CronTask.run_at <= now)
        .order_by(CronTask.run_at)
        .limit(limit)
    ).all()
    return list(tasks)


def claim_task(session: Session, task: CronTask, now: datetime) -> bool:
    """Atomically move a task from PENDING to PROCESSING.

    The conditional update is committed immediately so a concurrent
    invocation reading the same row sees the claim.

    Returns:
        True if this caller owns the task, False if someone else claimed it
    """
    result = session.execute(
        update(CronTask)
        .where(CronTask.id == task.id)
        .where(CronTask.status == CronTaskStatus.PENDING)
        .values(status=CronTaskStatus.PROCESSING, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount == 1


def complete_tasks(session: Session, task_ids: list[UUID], now: datetime) -> int:
    """Bulk-complete claimed tasks.

    Only rows still in PROCESSING are touched.
    """
    if not task_ids:
        return 0
    result = session.execute(
        update(CronTask)
        .where(CronTask.id.in_(task_ids))
        .where(CronTask.status == CronTaskStatus.PROCESSING)
        .values(status=CronTaskStatus.COMPLETED, processed_at=now, error_message=None)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    return result.rowcount


def finish_task(
    session: Session,
    task_id: UUID,
    status: CronTaskStatus,
    now: datetime,
    error: str | None = None,
) -> bool:
    """Move one claimed task to a terminal status.

    Conditional on the row still being PROCESSING. The caller commits.

    Returns:
        False when the row was already finished elsewhere or deleted
    """
    if status not in TERMINAL_STATUSES:
        raise ValueError(f"{status.value} is not a terminal status")

    result = session.execute(
        update(CronTask)
        .where(CronTask.id == task_id)
        .where(CronTask.status == CronTaskStatus.PROCESSING)
        .values(
            status=status,
            processed_at=now,
            error_message=error if status == CronTaskStatus.FAILED else None,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def discard_task(session: Session, task_id: UUID) -> bool:
    """Delete a claimed task. The caller commits.

    Returns:
        False when the row had already left PROCESSING or was gone
    """
    result = session.execute(
        delete(CronTask)
        .where(CronTask.id == task_id)
        .where(CronTask.status == CronTaskStatus.PROCESSING)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def release_stale_claims(
    session: Session,
    task_type: CronTaskType,
    now: datetime,
    timeout_seconds: int,
) -> int:
    """Return abandoned PROCESSING tasks to PENDING.

    A claim older than timeout_seconds belongs to an invocation that died
    before recording an outcome.
    """
    cutoff = now - timedelta(seconds=timeout_seconds)
    result = session.execute(
        update(CronTask)
        .where(CronTask.task_type == task_type)
        .where(CronTask.status == CronTaskStatus.PROCESSING)
        .where(CronTask.claimed_at < cutoff)
        .values(status=CronTaskStatus.PENDING, claimed_at=None)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    if result.rowcount:
        logger.warning(
            f"Released {result.rowcount} stale {task_type.value} claims",
            extra={"task_type": task_type.value, "released": result.rowcount},
        )
    return result.rowcount
