"""Enqueue policy for certificate auto-generation.

Decides, when an attendance scan is accepted, whether a certificate task
is scheduled and when it becomes due:

1. Auto-generation off, or no template -> nothing to do
2. Feedback required for the certificate -> nothing to do here, the
   feedback submission generates the certificate directly
3. Otherwise -> a pending task due at the event end (clamped to now)

Also selects the single post-scan email, if any, an attendee receives.
"""

import logging
from datetime import datetime, time
from enum import Enum
from uuid import UUID

from sqlmodel import Session

from medcerts.models.cron_task import CronTaskType
from medcerts.models.event import Event
from medcerts.services.cron_tasks import build_idempotency_key, create_task

logger = logging.getLogger(__name__)

END_OF_DAY = time(23, 59, 59)


class EnqueueOutcome(str, Enum):
    """Result of an enqueue decision."""
    DISABLED = "disabled"
    FEEDBACK_GATED = "feedback_gated"
    SCHEDULED = "scheduled"
    ALREADY_SCHEDULED = "already_scheduled"


class PostScanEmail(str, Enum):
    """Email an attendee receives right after a scan."""
    NONE = "none"
    FEEDBACK_REQUEST = "feedback_request"
    THANK_YOU = "thank_you"


def event_end_at(event: Event) -> datetime | None:
    """Compute the event end timestamp in UTC.

    Falls back from end_time to start_time to end of day.
    Returns None for undated events.
    """
    if event.date is None:
        return None
    end_time = event.end_time or event.start_time or END_OF_DAY
    return datetime.combine(event.date, end_time)


def compute_run_at(event: Event, now: datetime) -> datetime:
    """Due time for a certificate task: event end, never in the past."""
    end_at = event_end_at(event)
    if end_at is None or end_at < now:
        return now
    return end_at


def schedule_certificate_task(
    session: Session,
    event: Event,
    user_id: UUID,
    now: datetime | None = None,
) -> EnqueueOutcome:
    """Schedule certificate generation for one attendee (scan-time trigger).

    Args:
        session: Database session
        event: The scanned event
        user_id: The scanning attendee
        now: Current time (defaults to utcnow)

    Returns:
        EnqueueOutcome describing what happened
    """
    now = now or datetime.utcnow()

    if not event.certificates_automated:
        return EnqueueOutcome.DISABLED

    if event.feedback_required_for_certificate:
        logger.info(
            "Certificate deferred to feedback submission",
            extra={"event_id": str(event.id), "user_id": str(user_id)},
        )
        return EnqueueOutcome.FEEDBACK_GATED

    task_type = CronTaskType.CERTIFICATES_AUTO_GENERATE
    task = create_task(
        session,
        task_type=task_type,
        event_id=event.id,
        user_id=user_id,
        run_at=compute_run_at(event, now),
        idempotency_key=build_idempotency_key(task_type, event.id, user_id, event.date),
    )
    if task is None:
        return EnqueueOutcome.ALREADY_SCHEDULED

    logger.info(
        "Scheduled certificate task",
        extra={
            "task_id": str(task.id),
            "event_id": str(event.id),
            "user_id": str(user_id),
            "run_at": task.run_at.isoformat(),
        },
    )
    return EnqueueOutcome.SCHEDULED


def schedule_certificate_sweep(
    session: Session,
    event: Event,
    now: datetime | None = None,
) -> EnqueueOutcome:
    """Schedule a fan-out task covering every scanned attendee of an event."""
    now = now or datetime.utcnow()

    if not event.certificates_automated:
        return EnqueueOutcome.DISABLED
    if event.feedback_required_for_certificate:
        return EnqueueOutcome.FEEDBACK_GATED

    task_type = CronTaskType.CERTIFICATES_AUTO_GENERATE
    task = create_task(
        session,
        task_type=task_type,
        event_id=event.id,
        user_id=None,
        run_at=compute_run_at(event, now),
        idempotency_key=build_idempotency_key(task_type, event.id, None, event.date),
    )
    return EnqueueOutcome.SCHEDULED if task else EnqueueOutcome.ALREADY_SCHEDULED


def schedule_feedback_invites(
    session: Session,
    event: Event,
    now: datetime | None = None,
) -> EnqueueOutcome:
    """Schedule the post-event feedback invite marker for an event."""
    now = now or datetime.utcnow()

    if not (event.feedback_enabled and event.booking_enabled):
        return EnqueueOutcome.DISABLED

    task_type = CronTaskType.FEEDBACK_INVITES
    task = create_task(
        session,
        task_type=task_type,
        event_id=event.id,
        user_id=None,
        run_at=compute_run_at(event, now),
        idempotency_key=build_idempotency_key(task_type, event.id, None, event.date),
    )
    return EnqueueOutcome.SCHEDULED if task else EnqueueOutcome.ALREADY_SCHEDULED


def select_post_scan_email(event: Event, certificate_outcome: EnqueueOutcome) -> PostScanEmail:
    """Pick the one email an attendee gets right after scanning.

    | feedback_enabled | booking_enabled | certificate task | email            |
    |------------------|-----------------|------------------|------------------|
    | True             | False           | any              | FEEDBACK_REQUEST |
    | True             | True            | any              | NONE (deferred)  |
    | False            | any             | scheduled        | NONE             |
    | False            | any             | not scheduled    | THANK_YOU        |
    """
    if event.feedback_enabled:
        if event.booking_enabled:
            return PostScanEmail.NONE
        return PostScanEmail.FEEDBACK_REQUEST

    if certificate_outcome in (EnqueueOutcome.SCHEDULED, EnqueueOutcome.ALREADY_SCHEDULED):
        return PostScanEmail.NONE
    return PostScanEmail.THANK_YOU
