"""Attendance QR code scan endpoint."""

from fastapi import APIRouter, HTTPException

from medcerts.api.deps import BaseURL, CurrentUser, DBSession
from medcerts.models.qr_code import ScanRequest, ScanResponse
from medcerts.services.attendance import AttendanceError, record_scan
from medcerts.services.enqueue import EnqueueOutcome

router = APIRouter(prefix="/api/qr-codes", tags=["Attendance"])


@router.post("/scan", response_model=ScanResponse)
def scan_qr_code(
    session: DBSession,
    current_user: CurrentUser,
    base_url: BaseURL,
    scan: ScanRequest,
) -> ScanResponse:
    """Mark the caller's attendance for an event."""
    try:
        result = record_scan(session, scan.event_id, current_user, base_url)
    except AttendanceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return ScanResponse(
        message=result.message,
        checked_in_at=result.checked_in_at,
        has_booking=result.has_booking,
        duplicate=result.duplicate,
        certificate_scheduled=result.certificate_outcome in (
            EnqueueOutcome.SCHEDULED,
            EnqueueOutcome.ALREADY_SCHEDULED,
        ),
    )
