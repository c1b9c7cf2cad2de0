"""Post-event feedback invite job.

Consumes ``feedback_invites`` marker tasks scheduled at event end for
events that collect feedback from booked attendees. Every attendee with a
successful scan gets one feedback-request notification, recorded as a
completed per-user task keyed ``{marker_key}|{user_id}`` so a re-run never
invites twice.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlmodel import Session

from medcerts.models.cron_task import CronTask, CronTaskStatus, CronTaskType
from medcerts.models.event import Event
from medcerts.models.notification import NotificationKind
from medcerts.models.user import User
from medcerts.services.attendance import scanned_user_ids
from medcerts.services.cron_tasks import create_task, get_task_by_key
from medcerts.services.notifications import queue_notification
from medcerts.workers.base import ItemFailure, WorkerResult
from medcerts.workers.cron_task_worker import CronTaskWorker

logger = logging.getLogger(__name__)


class InviteOutcome(str, Enum):
    DISABLED = "disabled"
    INVITED = "invited"


@dataclass
class FeedbackInviteSummary:
    """Counters reported by one invocation of the job."""

    now: datetime
    invites_sent: int = 0
    tasks_processed: int = 0
    error: str | None = None

    def to_response(self) -> dict:
        return {
            "success": self.error is None,
            "invitesSent": self.invites_sent,
            "tasksProcessed": self.tasks_processed,
            "now": self.now.isoformat(),
        }


def invite_key(marker: CronTask, user_id: UUID) -> str:
    """Key of the per-user record written for one invite."""
    return f"{marker.idempotency_key}|{user_id}"


class FeedbackInviteWorker(CronTaskWorker):
    """Queues feedback-request emails once an event has ended."""

    task_type = CronTaskType.FEEDBACK_INVITES

    def __init__(
        self,
        base_url: str,
        batch_size: int = 25,
        claim_timeout_seconds: int | None = None,
    ) -> None:
        super().__init__(batch_size=batch_size, claim_timeout_seconds=claim_timeout_seconds)
        self.base_url = base_url
        self.summary = FeedbackInviteSummary(now=self.now)

    @property
    def worker_name(self) -> str:
        return "FeedbackInviteWorker"

    def process(self, session: Session, now: datetime | None = None) -> FeedbackInviteSummary:
        """Run one batch and return the job summary."""
        result = self.run(session, now)
        self.summary.error = result.cycle_error
        return self.summary

    def before_cycle(self, session: Session) -> None:
        self.summary = FeedbackInviteSummary(now=self.now)
        super().before_cycle(session)

    def process_item(self, session: Session, item: CronTask) -> InviteOutcome:
        event = session.get(Event, item.event_id)
        if event is None:
            raise ItemFailure("Event not found")

        if not (event.booking_enabled and event.feedback_enabled):
            return InviteOutcome.DISABLED

        for user_id in scanned_user_ids(session, event.id):
            key = invite_key(item, user_id)
            if get_task_by_key(session, key) is not None:
                continue

            user = session.get(User, user_id)
            if user is None:
                continue

            queue_notification(
                session, NotificationKind.FEEDBACK_REQUEST, event, user, self.base_url
            )
            # The notification commits together with the per-user record
            created = create_task(
                session,
                task_type=self.task_type,
                event_id=event.id,
                user_id=user_id,
                run_at=self.now,
                idempotency_key=key,
                status=CronTaskStatus.COMPLETED,
                processed_at=self.now,
            )
            if created is not None:
                self.summary.invites_sent += 1

        return InviteOutcome.INVITED

    def mark_completed(self, session: Session, item: CronTask, outcome: InviteOutcome) -> None:
        if self.complete_task(session, item):
            self.summary.tasks_processed += 1

    def after_cycle(self, session: Session, result: WorkerResult) -> None:
        result.metadata.update({
            "invites_sent": self.summary.invites_sent,
            "tasks_processed": self.summary.tasks_processed,
        })
