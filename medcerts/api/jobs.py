"""Cron job endpoints.

Invoked on a schedule by the platform cron (GET) or manually (POST); both
run one batch of the job and return its summary.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status

from medcerts.api.deps import (
    AppSettings,
    BaseURL,
    CertificateGenerator,
    DBSession,
    verify_cron_request,
)
from medcerts.workers.certificate_worker import CertificateAutoGenerateWorker
from medcerts.workers.feedback_invite_worker import FeedbackInviteWorker

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/jobs",
    tags=["Jobs"],
    dependencies=[Depends(verify_cron_request)],
)


def get_certificate_worker(
    settings: AppSettings,
    generator: CertificateGenerator,
) -> CertificateAutoGenerateWorker:
    return CertificateAutoGenerateWorker(
        generator=generator,
        batch_size=settings.CERT_JOB_BATCH_SIZE,
        claim_timeout_seconds=settings.TASK_CLAIM_TIMEOUT_SECONDS,
    )


def get_feedback_invite_worker(
    settings: AppSettings,
    base_url: BaseURL,
) -> FeedbackInviteWorker:
    return FeedbackInviteWorker(
        base_url=base_url,
        batch_size=settings.FEEDBACK_INVITE_BATCH_SIZE,
        claim_timeout_seconds=settings.TASK_CLAIM_TIMEOUT_SECONDS,
    )


@router.api_route("/certificates-auto-generate", methods=["GET", "POST"])
def run_certificate_job(
    session: DBSession,
    worker: Annotated[CertificateAutoGenerateWorker, Depends(get_certificate_worker)],
) -> dict[str, Any]:
    """Generate certificates for due tasks."""
    summary = worker.process(session)
    if summary.error is not None:
        logger.error(
            "Certificate job failed",
            extra={"error": summary.error},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process certificate tasks",
        )
    return summary.to_response()


@router.api_route("/feedback-invites", methods=["GET", "POST"])
def run_feedback_invite_job(
    session: DBSession,
    worker: Annotated[FeedbackInviteWorker, Depends(get_feedback_invite_worker)],
) -> dict[str, Any]:
    """Queue feedback invites for events that have ended."""
    summary = worker.process(session)
    if summary.error is not None:
        logger.error(
            "Feedback invite job failed",
            extra={"error": summary.error},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process feedback invite tasks",
        )
    return summary.to_response()
