"""API dependencies for dependency injection."""

import secrets
from collections.abc import Generator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlmodel import Session

from medcerts.config import Settings, get_settings
from medcerts.db.session import get_session
from medcerts.models.user import User
from medcerts.services.certificates import CertificateService
from medcerts.services.email import get_email_sender
from medcerts.services.generation_client import GenerationClient, resolve_base_url
from medcerts.services.rendering import get_certificate_renderer

security = HTTPBearer(auto_error=False)

CRON_SECRET_HEADER = "x-cron-secret"
CRON_PLATFORM_HEADER = "x-vercel-cron"


def get_db_session() -> Generator[Session, None, None]:
    """Get database session dependency."""
    yield from get_session()


DBSession = Annotated[Session, Depends(get_db_session)]
AppSettings = Annotated[Settings, Depends(get_settings)]


def _user_from_token(session: Session, settings: Settings, token: str) -> User | None:
    """Resolve the user named by a bearer token, None if the token is not valid."""
    try:
        payload = jwt.decode(
            token,
            settings.AUTH_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError:
        return None

    user_id: str | None = payload.get("sub")
    if user_id is None:
        return None
    try:
        return session.get(User, UUID(user_id))
    except ValueError:
        return None


def get_optional_user(
    session: DBSession,
    settings: AppSettings,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> User | None:
    """Get the authenticated user, or None for anonymous callers."""
    if credentials is None or not settings.AUTH_SECRET:
        return None
    return _user_from_token(session, settings, credentials.credentials)


def get_current_user(user: Annotated[User | None, Depends(get_optional_user)]) -> User:
    """Get current authenticated user from JWT token."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


OptionalUser = Annotated[User | None, Depends(get_optional_user)]
CurrentUser = Annotated[User, Depends(get_current_user)]


def require_admin(user: CurrentUser) -> User:
    """Only admins may trigger pipeline maintenance."""
    if user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


AdminUser = Annotated[User, Depends(require_admin)]


def is_cron_caller(request: Request, settings: Settings) -> bool:
    """Check whether the request comes from the scheduler or an internal callback.

    A configured INTERNAL_CRON_SECRET must be presented; without one the
    platform cron header is accepted.
    """
    if settings.INTERNAL_CRON_SECRET:
        presented = request.headers.get(CRON_SECRET_HEADER, "")
        return secrets.compare_digest(presented, settings.INTERNAL_CRON_SECRET)
    return request.headers.get(CRON_PLATFORM_HEADER) is not None


def verify_cron_request(request: Request, settings: AppSettings) -> None:
    """Guard for the job endpoints; open outside production."""
    if is_cron_caller(request, settings) or not settings.is_production:
        return
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
    )


def verify_generation_caller(
    request: Request,
    settings: AppSettings,
    user: OptionalUser,
) -> User | None:
    """Guard for the generation endpoint.

    Returns:
        The acting user, None for cron callers and anonymous dev calls
    """
    if is_cron_caller(request, settings):
        return None
    if user is not None:
        return user
    if not settings.is_production:
        return None
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
    )


def get_certificate_service() -> CertificateService:
    """Get the certificate service with the configured collaborators."""
    return CertificateService(get_certificate_renderer(), get_email_sender())


def get_generation_client(settings: AppSettings) -> Generator[GenerationClient, None, None]:
    """Get a generation client, closed when the request ends."""
    client = GenerationClient(settings)
    try:
        yield client
    finally:
        client.close()


def get_base_url(settings: AppSettings) -> str:
    """Public base URL used in links sent to attendees."""
    return resolve_base_url(settings.base_url_candidates)


Certificates = Annotated[CertificateService, Depends(get_certificate_service)]
CertificateGenerator = Annotated[GenerationClient, Depends(get_generation_client)]
BaseURL = Annotated[str, Depends(get_base_url)]
