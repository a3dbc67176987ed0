"""
Declutter API - Main application entry point.

Turns a photo of a messy room into a step-by-step tidy-up plan, an edited
"after" image and a narrated audio walkthrough.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from app.core.config import get_settings
from app.core.database import Database
from app.core.middleware import MaxBodySizeMiddleware
from app.runtime_settings.views import router as settings_router
from app.transformations.views import router as transformations_router

settings = get_settings()
API_PREFIX = "/api"

logging.basicConfig(
    level=(settings.LOG_LEVEL or "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def _uses_mongo() -> bool:
    return (settings.JOB_STORE_BACKEND or "").strip().lower() == "mongo"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    # Startup
    if _uses_mongo():
        await Database.connect()
    yield
    # Shutdown
    if _uses_mongo():
        await Database.disconnect()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
## Declutter API

Upload a photo of a room and get back:

- **Plan**: a numbered decluttering plan written for you
- **After image**: the same room, tidied
- **Audio**: the plan read aloud

Submit with `POST /transformations`, start work with `POST /process/{id}`,
then poll `GET /transformations/{id}` until the status is `completed` or `failed`.
    """,
    lifespan=lifespan,
    docs_url=f"{API_PREFIX}/docs",
    redoc_url=f"{API_PREFIX}/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Reject oversized base64 uploads before they reach the handlers
app.add_middleware(MaxBodySizeMiddleware)

if (settings.STORAGE_BACKEND or "").strip().lower() == "local":
    media_dir = Path(settings.LOCAL_STORAGE_DIR)
    media_dir.mkdir(parents=True, exist_ok=True)
    app.mount(settings.LOCAL_STORAGE_URL_PREFIX, StaticFiles(directory=str(media_dir)), name="media")

# Include routers
routers = [
    transformations_router,
    settings_router,
]

for router in routers:
    app.include_router(router, prefix=API_PREFIX)


@app.get("/", tags=["Health"])
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "database": "connected" if Database.client else "disconnected",
        "job_store": settings.JOB_STORE_BACKEND,
        "storage": settings.STORAGE_BACKEND,
        "version": settings.APP_VERSION,
    }
