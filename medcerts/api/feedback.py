"""Feedback submission endpoint."""

from fastapi import APIRouter, HTTPException

from medcerts.api.deps import Certificates, CurrentUser, DBSession
from medcerts.models.feedback import FeedbackSubmit, FeedbackSubmitResponse
from medcerts.services.feedback import FeedbackError, submit_feedback

router = APIRouter(prefix="/api/feedback", tags=["Feedback"])


@router.post("/submit", response_model=FeedbackSubmitResponse)
def submit_feedback_endpoint(
    session: DBSession,
    current_user: CurrentUser,
    certificates: Certificates,
    feedback: FeedbackSubmit,
) -> FeedbackSubmitResponse:
    """Store event feedback; generates the certificate for feedback-gated events."""
    try:
        result = submit_feedback(
            session,
            certificates,
            feedback.event_id,
            current_user,
            feedback.responses,
        )
    except FeedbackError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return FeedbackSubmitResponse(
        feedback_response_id=result.feedback_response_id,
        auto_certificate_generated=result.auto_certificate_generated,
    )
