"""Queueing of attendee notification emails.

Notifications are persisted as NotificationDelivery rows and delivered by
the NotificationWorker, so a delivery failure never reaches the caller.
"""

import logging

from sqlmodel import Session

from medcerts.models.event import Event
from medcerts.models.notification import NotificationDelivery, NotificationKind
from medcerts.models.user import User

logger = logging.getLogger(__name__)


def _event_when(event: Event) -> str:
    if event.date is None:
        return "Date not available"
    when = event.date.strftime("%d %B %Y")
    if event.start_time:
        when = f"{when} at {event.start_time.strftime('%H:%M')}"
    return when


def build_message(kind: NotificationKind, event: Event, user: User, base_url: str) -> tuple[str, str]:
    """Build (subject, body) for an attendee notification."""
    if kind == NotificationKind.FEEDBACK_REQUEST:
        subject = f"Share your feedback: {event.title[:150]}"
        body = (
            f"Hi {user.display_name},\n\n"
            f"Thank you for attending {event.title} ({_event_when(event)}).\n"
            f"Please tell us how it went: {base_url}/feedback/event/{event.id}\n"
        )
    else:
        subject = f"Thanks for attending {event.title[:150]}"
        body = (
            f"Hi {user.display_name},\n\n"
            f"Your attendance at {event.title} ({_event_when(event)}) has been recorded.\n"
        )
    return subject, body


def queue_notification(
    session: Session,
    kind: NotificationKind,
    event: Event,
    user: User,
    base_url: str,
) -> NotificationDelivery:
    """Persist a pending notification for the delivery worker.

    Note: Does not commit, the caller owns the transaction.
    """
    subject, body = build_message(kind, event, user, base_url)
    notification = NotificationDelivery(
        user_id=user.id,
        event_id=event.id,
        kind=kind,
        recipient=user.email,
        subject=subject,
        message=body,
    )
    session.add(notification)

    logger.info(
        "Queued attendee notification",
        extra={
            "notification_id": str(notification.id),
            "kind": kind.value,
            "event_id": str(event.id),
            "user_id": str(user.id),
        },
    )
    return notification
