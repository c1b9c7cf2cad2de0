"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import SQLModel

from medcerts.api.attendance import router as attendance_router
from medcerts.api.certificates import router as certificates_router
from medcerts.api.events import router as events_router
from medcerts.api.feedback import router as feedback_router
from medcerts.api.jobs import router as jobs_router
from medcerts.config import get_settings
from medcerts.db.session import engine

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate settings and create database tables on startup."""
    settings.validate()
    # Import models to register them with SQLModel
    import medcerts.models  # noqa: F401
    SQLModel.metadata.create_all(engine)
    yield

app = FastAPI(
    title="MedCerts API",
    description="Attendance, feedback and certificate automation for teaching events",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS origins - the configured public URLs plus local development
cors_origins = [
    settings.NEXTAUTH_URL,
    settings.NEXT_PUBLIC_APP_URL,
    settings.NEXT_PUBLIC_SITE_URL,
    "http://localhost:3000",
]
# Remove duplicates and empty strings
cors_origins = [origin for origin in set(cors_origins) if origin]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(attendance_router)
app.include_router(feedback_router)
app.include_router(certificates_router)
app.include_router(events_router)
app.include_router(jobs_router)


@app.get("/health")
def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
