"""Services for the certificate pipeline.

Services:
- cron_tasks.py: Idempotent task store (schedule, claim, complete)
- enqueue.py: When certificate and feedback invite tasks are scheduled
- certificates.py: Certificate generation capability
- generation_client.py: HTTP adapter the batch job uses to call it
- attendance.py: QR code scan flow (Trigger A)
- feedback.py: Feedback submission flow (Trigger B)
- bookings.py, notifications.py, email.py, rendering.py: collaborators
"""

from medcerts.services.certificates import (
    CertificateExistsError,
    CertificateGenerationError,
    CertificateService,
)
from medcerts.services.enqueue import EnqueueOutcome, PostScanEmail
from medcerts.services.generation_client import GenerationClient, GenerationResult

__all__ = [
    "CertificateExistsError",
    "CertificateGenerationError",
    "CertificateService",
    "EnqueueOutcome",
    "PostScanEmail",
    "GenerationClient",
    "GenerationResult",
]
