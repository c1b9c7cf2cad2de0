"""Certificate auto-generation batch processor.

Drives due ``certificates_auto_generate`` tasks to a terminal state:

1. Event missing -> failed
2. Auto-generation no longer enabled -> completed (no-op)
3. Event now feedback-gated -> task deleted, counted as skipped
4. Per-user task -> certificate existence check, booking resolution,
   generation call
5. Fan-out task -> one per-user task per scanned attendee, marker completed

Tasks whose certificate was generated are completed in one bulk update
at the end of the cycle.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlmodel import Session

from medcerts.models.audit_log import AuditLog
from medcerts.models.certificate import GenerationRequest
from medcerts.models.cron_task import CronTask, CronTaskType
from medcerts.models.event import Event
from medcerts.services.attendance import scanned_user_ids
from medcerts.services.bookings import get_or_create_booking
from medcerts.services.certificates import certificate_exists
from medcerts.services.cron_tasks import (
    build_idempotency_key,
    complete_tasks,
    create_task,
    discard_task,
)
from medcerts.services.generation_client import GenerationClient
from medcerts.workers.base import ItemFailure, WorkerResult
from medcerts.workers.cron_task_worker import CronTaskWorker

logger = logging.getLogger(__name__)


class CertificateTaskOutcome(str, Enum):
    """How a certificate task was resolved."""
    GENERATED = "generated"
    GENERATED_AND_EMAILED = "generated_and_emailed"
    ALREADY_CERTIFIED = "already_certified"
    POLICY_DISABLED = "policy_disabled"
    POLICY_CONTRADICTION = "policy_contradiction"
    FANNED_OUT = "fanned_out"


@dataclass
class CertificateJobSummary:
    """Counters reported by one invocation of the job."""

    now: datetime
    generated: int = 0
    skipped: int = 0
    emailed: int = 0
    tasks_processed: int = 0
    failed: int = 0
    error: str | None = None
    completed_ids: list[UUID] = field(default_factory=list)

    def to_response(self) -> dict:
        return {
            "success": self.error is None,
            "generated": self.generated,
            "skipped": self.skipped,
            "emailed": self.emailed,
            "tasksProcessed": self.tasks_processed,
            "now": self.now.isoformat(),
        }


class CertificateAutoGenerateWorker(CronTaskWorker):
    """Processes due certificate generation tasks."""

    task_type = CronTaskType.CERTIFICATES_AUTO_GENERATE

    def __init__(
        self,
        generator: GenerationClient,
        batch_size: int = 50,
        claim_timeout_seconds: int | None = None,
    ) -> None:
        super().__init__(batch_size=batch_size, claim_timeout_seconds=claim_timeout_seconds)
        self.generator = generator
        self.summary = CertificateJobSummary(now=self.now)

    @property
    def worker_name(self) -> str:
        return "CertificateAutoGenerateWorker"

    def process(self, session: Session, now: datetime | None = None) -> CertificateJobSummary:
        """Run one batch and return the job summary."""
        result = self.run(session, now)
        self.summary.error = result.cycle_error
        return self.summary

    def close(self) -> None:
        self.generator.close()

    def before_cycle(self, session: Session) -> None:
        self.summary = CertificateJobSummary(now=self.now)
        super().before_cycle(session)

    def process_item(self, session: Session, item: CronTask) -> CertificateTaskOutcome:
        event = session.get(Event, item.event_id)
        if event is None:
            raise ItemFailure("Event not found")

        if not event.certificates_automated:
            return CertificateTaskOutcome.POLICY_DISABLED

        if event.feedback_required_for_certificate:
            return CertificateTaskOutcome.POLICY_CONTRADICTION

        if item.is_fan_out:
            return self._fan_out(session, item, event)
        return self._generate_for_user(session, item, event)

    def _generate_for_user(
        self, session: Session, task: CronTask, event: Event
    ) -> CertificateTaskOutcome:
        """Resolve a per-user task to at most one generation call."""
        user_id = task.user_id

        if certificate_exists(session, event.id, user_id):
            return CertificateTaskOutcome.ALREADY_CERTIFIED

        booking = get_or_create_booking(session, event.id, user_id, reason="certificate_task")
        if booking is None:
            # Counted as skipped as well as failed
            self.summary.skipped += 1
            raise ItemFailure("Failed to create booking")

        send_email = event.certificate_auto_send_email
        request = GenerationRequest(
            event_id=event.id,
            user_id=user_id,
            booking_id=booking.id,
            template_id=event.certificate_template_id,
            send_email=send_email,
        )
        result = self.generator.generate(request)
        if not result.ok:
            raise ItemFailure(result.body or f"Generation failed with status {result.status_code}")

        if send_email:
            return CertificateTaskOutcome.GENERATED_AND_EMAILED
        return CertificateTaskOutcome.GENERATED

    def _fan_out(self, session: Session, marker: CronTask, event: Event) -> CertificateTaskOutcome:
        """Create one per-user task for every attendee with a successful scan.

        The new tasks are due at the marker's run_at and are picked up by a
        later invocation.
        """
        run_at = marker.run_at
        user_ids = scanned_user_ids(session, event.id)
        created = 0

        for user_id in user_ids:
            task = create_task(
                session,
                task_type=self.task_type,
                event_id=event.id,
                user_id=user_id,
                run_at=run_at,
                idempotency_key=build_idempotency_key(self.task_type, event.id, user_id, event.date),
            )
            if task is not None:
                created += 1

        logger.info(
            "Fanned out certificate tasks",
            extra={
                "event_id": str(event.id),
                "attendees": len(user_ids),
                "tasks_created": created,
            },
        )
        return CertificateTaskOutcome.FANNED_OUT

    def mark_completed(
        self, session: Session, item: CronTask, outcome: CertificateTaskOutcome
    ) -> None:
        if outcome in (
            CertificateTaskOutcome.GENERATED,
            CertificateTaskOutcome.GENERATED_AND_EMAILED,
        ):
            self.summary.generated += 1
            if outcome == CertificateTaskOutcome.GENERATED_AND_EMAILED:
                self.summary.emailed += 1
            # Completed in bulk by after_cycle
            self.summary.completed_ids.append(item.id)
            return

        if outcome == CertificateTaskOutcome.POLICY_CONTRADICTION:
            self._delete_contradicting_task(session, item)
            self.summary.skipped += 1
            return

        if outcome == CertificateTaskOutcome.ALREADY_CERTIFIED:
            self.summary.skipped += 1

        self.complete_task(session, item)

    def _delete_contradicting_task(self, session: Session, task: CronTask) -> None:
        """Remove a task created before its event became feedback-gated."""
        details = {
            "event_id": str(task.event_id),
            "user_id": str(task.user_id) if task.user_id else None,
            "idempotency_key": task.idempotency_key,
            "reason": "feedback_required_for_certificate",
        }
        task_id = task.id
        if not discard_task(session, task_id):
            logger.warning(
                "Feedback-gated certificate task already finished elsewhere",
                extra={"task_id": str(task_id)},
            )
            return

        session.add(AuditLog(
            user_id=None,
            action="cron_task.deleted",
            entity_type="cron_task",
            entity_id=task_id,
            details=details,
        ))
        logger.info(
            "Deleted feedback-gated certificate task",
            extra={"task_id": str(task_id), "event_id": details["event_id"]},
        )

    def mark_failed(
        self, session: Session, item: CronTask, error: str, can_retry: bool
    ) -> None:
        super().mark_failed(session, item, error, can_retry)
        self.summary.failed += 1

    def after_cycle(self, session: Session, result: WorkerResult) -> None:
        self.summary.tasks_processed = complete_tasks(
            session, self.summary.completed_ids, self.now
        )
        result.metadata.update({
            "generated": self.summary.generated,
            "skipped": self.summary.skipped,
            "emailed": self.summary.emailed,
            "tasks_processed": self.summary.tasks_processed,
        })
