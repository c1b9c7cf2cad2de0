"""Database engine and session management.

PostgreSQL in production (psycopg v3 driver), SQLite for local runs and
tests.
"""

from collections.abc import Generator
from typing import Any

from sqlmodel import Session, create_engine

from medcerts.config import get_settings


def normalize_database_url(url: str) -> str:
    """Select the psycopg v3 driver for plain postgresql:// URLs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def connect_args_for(url: str) -> dict[str, Any]:
    """Driver connect arguments for a normalized URL."""
    if url.startswith("postgresql"):
        return {"sslmode": "require"}
    if url.startswith("sqlite"):
        # Sessions are handed between the request threadpool and workers
        return {"check_same_thread": False}
    return {}


database_url = normalize_database_url(get_settings().DATABASE_URL)

engine = create_engine(
    database_url,
    echo=False,
    pool_pre_ping=True,
    connect_args=connect_args_for(database_url),
)


def get_session() -> Generator[Session, None, None]:
    """Yield a session closed when the caller is done with it."""
    with Session(engine) as session:
        yield session
