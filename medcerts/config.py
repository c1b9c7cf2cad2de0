"""Environment configuration for the MedCerts backend."""

import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

# Last entry of the base URL fallback chain.
PRODUCTION_FALLBACK_URL = "https://sim.bleepy.co.uk"


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    return int(value)


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self) -> None:
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./medcerts.db")
        self.AUTH_SECRET: str = os.getenv("AUTH_SECRET", "")
        self.JWT_ALGORITHM: str = "HS256"
        self.ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

        # Internal callbacks and cron callers
        self.INTERNAL_CRON_SECRET: str = os.getenv("INTERNAL_CRON_SECRET", "")
        self.VERCEL_AUTOMATION_BYPASS_SECRET: str = os.getenv(
            "VERCEL_AUTOMATION_BYPASS_SECRET", ""
        )

        # Base URL candidates for calling back into this service
        self.VERCEL_URL: str = os.getenv("VERCEL_URL", "")
        self.NEXTAUTH_URL: str = os.getenv("NEXTAUTH_URL", "")
        self.NEXT_PUBLIC_APP_URL: str = os.getenv("NEXT_PUBLIC_APP_URL", "")
        self.NEXT_PUBLIC_SITE_URL: str = os.getenv("NEXT_PUBLIC_SITE_URL", "")

        # Certificate pipeline
        self.CERT_JOB_BATCH_SIZE: int = _int_env("CERT_JOB_BATCH_SIZE", 50)
        self.FEEDBACK_INVITE_BATCH_SIZE: int = _int_env("FEEDBACK_INVITE_BATCH_SIZE", 25)
        self.GENERATION_TIMEOUT_SECONDS: int = _int_env("GENERATION_TIMEOUT_SECONDS", 30)
        self.TASK_CLAIM_TIMEOUT_SECONDS: int = _int_env("TASK_CLAIM_TIMEOUT_SECONDS", 900)

        # Background workers
        self.WORKER_BATCH_SIZE: int = _int_env("WORKER_BATCH_SIZE", 50)
        self.WORKER_MAX_RETRIES: int = _int_env("WORKER_MAX_RETRIES", 3)
        self.WORKER_RETRY_DELAY_SECONDS: int = _int_env("WORKER_RETRY_DELAY_SECONDS", 30)
        self.WORKER_POLL_INTERVAL_SECONDS: int = _int_env("WORKER_POLL_INTERVAL_SECONDS", 60)

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def base_url_candidates(self) -> list[str]:
        """Ordered base URL candidates, first non-empty one wins."""
        deployment_url = self.VERCEL_URL
        if deployment_url and not deployment_url.startswith("http"):
            deployment_url = f"https://{deployment_url}"
        return [
            deployment_url,
            self.NEXTAUTH_URL,
            self.NEXT_PUBLIC_APP_URL,
            self.NEXT_PUBLIC_SITE_URL,
            PRODUCTION_FALLBACK_URL,
        ]

    def validate(self) -> None:
        """Validate that required environment variables are set."""
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL environment variable is required")
        if self.is_production and not self.AUTH_SECRET:
            raise ValueError("AUTH_SECRET environment variable is required")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    return settings
