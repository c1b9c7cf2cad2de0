"""Certificate artifact rendering.

The image compositor lives outside this service; it is consumed as
render(template, data) -> storage path.
"""

import logging
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any

from medcerts.models.event import CertificateTemplate

logger = logging.getLogger(__name__)


class CertificateRenderer(ABC):
    """Interface for producing certificate artifacts."""

    @abstractmethod
    def render(self, template: CertificateTemplate, data: dict[str, Any]) -> str:
        """Render a certificate and return its storage path."""

    @abstractmethod
    def discard(self, path: str) -> None:
        """Remove an artifact that will not be recorded."""


class SimulatedCertificateRenderer(CertificateRenderer):
    """Computes storage paths without compositing an image."""

    def render(self, template: CertificateTemplate, data: dict[str, Any]) -> str:
        path = f"{data['event_id']}/{data['certificate_id']}.png"
        logger.info(
            "[SIMULATED] Rendering certificate",
            extra={"template_id": str(template.id), "path": path},
        )
        return path

    def discard(self, path: str) -> None:
        logger.info("[SIMULATED] Discarding certificate", extra={"path": path})


@lru_cache
def get_certificate_renderer() -> CertificateRenderer:
    """Get the process-wide certificate renderer."""
    return SimulatedCertificateRenderer()
