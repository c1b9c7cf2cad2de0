"""Attendee notification delivery worker.

Sends the feedback-request and thank-you emails queued by the attendance
and feedback invite flows. A delivery that fails is retried with
exponential backoff until WORKER_MAX_RETRIES attempts have been made; its
failure stays on the NotificationDelivery row and never reaches a cron task.
"""

import logging
from datetime import timedelta
from uuid import UUID

from sqlalchemy import and_, or_, update
from sqlmodel import Session, select

from medcerts.config import get_settings
from medcerts.models.audit_log import AuditLog
from medcerts.models.notification import DeliveryStatus, NotificationDelivery
from medcerts.services.email import EmailSender, get_email_sender
from medcerts.workers.base import MAX_ERROR_LENGTH, WorkerBase

logger = logging.getLogger(__name__)


def retry_delay(attempts: int, base_seconds: int) -> timedelta:
    """Backoff before the next attempt: base * 2**attempts."""
    return timedelta(seconds=base_seconds * (2 ** attempts))


class NotificationWorker(WorkerBase[NotificationDelivery]):
    """Delivers queued attendee emails through an EmailSender."""

    def __init__(
        self,
        batch_size: int = 50,
        max_retries: int = 3,
        email_sender: EmailSender | None = None,
    ) -> None:
        super().__init__(batch_size=batch_size, max_retries=max_retries)
        self.email_sender = email_sender or get_email_sender()

    @property
    def worker_name(self) -> str:
        return "NotificationWorker"

    def _due(self):
        """New deliveries, plus failed ones whose retry time has come."""
        retry_due = and_(
            NotificationDelivery.status == DeliveryStatus.FAILED,
            NotificationDelivery.retry_count < self.max_retries,
            NotificationDelivery.next_retry_at.is_not(None),
            NotificationDelivery.next_retry_at <= self.now,
        )
        return or_(NotificationDelivery.status == DeliveryStatus.PENDING, retry_due)

    def fetch_pending(self, session: Session) -> list[NotificationDelivery]:
        return list(session.exec(
            select(NotificationDelivery)
            .where(self._due())
            .order_by(NotificationDelivery.created_at)
            .limit(self.batch_size)
        ).all())

    def mark_processing(self, session: Session, item: NotificationDelivery) -> bool:
        """Claim the delivery unless another run moved it on since selection."""
        claimed = session.execute(
            update(NotificationDelivery)
            .where(NotificationDelivery.id == item.id)
            .where(NotificationDelivery.status == item.status)
            .where(NotificationDelivery.status.in_((DeliveryStatus.PENDING, DeliveryStatus.FAILED)))
            .values(status=DeliveryStatus.PROCESSING)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        session.refresh(item)
        return claimed.rowcount == 1

    def process_item(self, session: Session, item: NotificationDelivery) -> None:
        """Hand the email to the sender.

        Raises:
            EmailDeliveryError: If the sender rejects the message
        """
        self.email_sender.send(item.recipient, item.subject or "", item.message)
        session.add(self._audit(item, "notification.delivered"))

    def mark_completed(self, session: Session, item: NotificationDelivery, outcome: None) -> None:
        item.status = DeliveryStatus.SENT
        item.sent_at = self.now
        item.error_message = None
        item.next_retry_at = None
        session.add(item)

    def mark_failed(
        self, session: Session, item: NotificationDelivery, error: str, can_retry: bool
    ) -> None:
        """Record a failed attempt and schedule the next one, if any is left."""
        session.refresh(item)
        item.retry_count += 1
        item.status = DeliveryStatus.FAILED
        item.error_message = error[:MAX_ERROR_LENGTH] if error else None

        if can_retry and item.retry_count < self.max_retries:
            delay = retry_delay(item.retry_count, get_settings().WORKER_RETRY_DELAY_SECONDS)
            item.next_retry_at = self.now + delay
        else:
            item.next_retry_at = None
            logger.warning(
                "Notification abandoned",
                extra={"notification_id": str(item.id), "attempts": item.retry_count},
            )

        session.add(self._audit(item, "notification.failed", error))
        session.add(item)

    def _audit(
        self,
        notification: NotificationDelivery,
        action: str,
        error: str | None = None,
    ) -> AuditLog:
        return AuditLog(
            user_id=notification.user_id,
            action=action,
            entity_type="notification",
            entity_id=notification.id,
            details={
                "kind": notification.kind.value,
                "event_id": str(notification.event_id) if notification.event_id else None,
                "recipient": notification.recipient,
                "attempts": notification.retry_count,
                "error": error,
            },
        )

    def get_item_id(self, item: NotificationDelivery) -> UUID:
        return item.id

    def should_retry(self, item: NotificationDelivery) -> bool:
        return item.retry_count < self.max_retries
