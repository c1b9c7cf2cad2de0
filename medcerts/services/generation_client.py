"""HTTP adapter for calling the certificate generation endpoint.

The certificate job runs in a process that does not always know the
externally-visible address of its own service, so the base URL is taken
from an ordered list of configured candidates.
"""

import logging
from dataclasses import dataclass

import httpx

from medcerts.config import PRODUCTION_FALLBACK_URL, Settings
from medcerts.models.certificate import GenerationRequest

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/certificates/auto-generate"


def resolve_base_url(candidates: list[str]) -> str:
    """Return the first non-empty candidate, without a trailing slash."""
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip().rstrip("/")
    return PRODUCTION_FALLBACK_URL


@dataclass
class GenerationResult:
    """Outcome of a generation call.

    Attributes:
        ok: Whether the endpoint reported success
        status_code: HTTP status of the response
        body: Raw response text, used as diagnostic on failure
    """

    ok: bool
    status_code: int
    body: str = ""


class GenerationClient:
    """Calls the certificate generation endpoint of this service."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize the client.

        Args:
            settings: Application settings (base URL candidates, secrets, timeout)
            client: Optional preconfigured httpx client
        """
        self.base_url = resolve_base_url(settings.base_url_candidates)
        self.url = f"{self.base_url}{GENERATE_PATH}"
        self.headers = self._build_headers(settings)
        self._timeout = settings.GENERATION_TIMEOUT_SECONDS
        self._client = client

    @staticmethod
    def _build_headers(settings: Settings) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "x-vercel-cron": "manual",
        }
        if settings.INTERNAL_CRON_SECRET:
            headers["x-cron-secret"] = settings.INTERNAL_CRON_SECRET
        if settings.VERCEL_AUTOMATION_BYPASS_SECRET:
            headers["x-vercel-protection-bypass"] = settings.VERCEL_AUTOMATION_BYPASS_SECRET
        return headers

    @property
    def client(self) -> httpx.Client:
        """Lazy-initialize HTTP client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout)
        return self._client

    def generate(self, request: GenerationRequest) -> GenerationResult:
        """Request generation of one certificate.

        Raises:
            httpx.HTTPError: On transport failures and timeouts
        """
        response = self.client.post(self.url, json=request.to_payload(), headers=self.headers)

        if response.is_success:
            return GenerationResult(ok=True, status_code=response.status_code, body=response.text)

        logger.error(
            "Certificate generation call failed",
            extra={
                "status_code": response.status_code,
                "event_id": str(request.event_id),
                "user_id": str(request.user_id),
            },
        )
        return GenerationResult(ok=False, status_code=response.status_code, body=response.text)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
