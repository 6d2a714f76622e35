"""
Feedloom API - FastAPI application entry point.

This module initializes the FastAPI application and configures
routers and lifecycle events.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from feedloom_core import get_logger, init_logging
from feedloom_core.config import settings
from feedloom_database.session import close_database, init_database

from .routers import refresh

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifecycle manager.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    init_logging(settings.log_level, settings.log_json)
    init_database(settings.database_url)
    logger.info("Starting Feedloom API", extra={"version": settings.version})

    yield

    await close_database()
    logger.info("Shutting down Feedloom API")


def create_app() -> FastAPI:
    """Build a FastAPI application instance."""
    application = FastAPI(
        title="Feedloom API",
        description="Feedloom - feed ingestion API",
        version=settings.version,
        lifespan=lifespan,
    )

    application.include_router(refresh.router, prefix="/api/refresh", tags=["Refresh"])

    @application.get("/api/health")
    async def health_check() -> dict[str, str]:
        """
        Health check endpoint.

        Returns:
            Dictionary containing service status and version.
        """
        return {"status": "healthy", "version": settings.version}

    return application


app = create_app()
