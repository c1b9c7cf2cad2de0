"""Certificate generation API endpoint.

Called by the certificate job over HTTP (with the cron secret) and by staff
tools (with a bearer token).
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from medcerts.api.deps import Certificates, DBSession, verify_generation_caller
from medcerts.models.certificate import CertificateResponse, GenerationRequest
from medcerts.models.user import User
from medcerts.services.certificates import CertificateGenerationError

router = APIRouter(prefix="/api/certificates", tags=["Certificates"])


@router.post("/auto-generate", response_model=CertificateResponse)
def auto_generate_certificate(
    session: DBSession,
    certificates: Certificates,
    caller: Annotated[User | None, Depends(verify_generation_caller)],
    request: GenerationRequest,
) -> CertificateResponse:
    """Generate, record and optionally email one certificate."""
    try:
        certificate = certificates.generate(
            session,
            request,
            generated_by=caller.id if caller else None,
        )
    except CertificateGenerationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return CertificateResponse.model_validate(certificate)
