"""
FastAPI dependencies.

Provides dependency injection for the caller identity and services.
"""

from fastapi import HTTPException, status

from feedloom_core.services import IngestionService
from feedloom_database.session import get_session_factory


async def get_current_user_id() -> str:
    """
    Resolve the authenticated caller's user id.

    Authentication belongs to the hosting application, which overrides
    this dependency (``app.dependency_overrides``) with its own resolver.
    Without an override every request is rejected.

    Raises:
        HTTPException: Always, when no authentication resolver is installed.
    """
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_ingestion_service() -> IngestionService:
    """Get ingestion service instance."""
    return IngestionService(get_session_factory())
