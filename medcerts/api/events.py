"""Event maintenance endpoints."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from medcerts.api.deps import AdminUser, DBSession
from medcerts.models.event import Event
from medcerts.services.enqueue import schedule_certificate_sweep

router = APIRouter(prefix="/api/events", tags=["Events"])


@router.post("/{event_id}/certificate-sweep", status_code=status.HTTP_202_ACCEPTED)
def schedule_certificate_sweep_endpoint(
    session: DBSession,
    admin: AdminUser,
    event_id: UUID,
) -> dict[str, str]:
    """Schedule certificate tasks for every attendee who scanned in.

    The sweep runs as a fan-out task at event end.
    """
    event = session.get(Event, event_id)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Event not found",
        )

    outcome = schedule_certificate_sweep(session, event)
    return {"status": outcome.value}
