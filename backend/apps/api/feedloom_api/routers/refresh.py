"""
Feed refresh router.

Provides endpoints to refresh all or some of the caller's feeds.
"""

from typing import Annotated

from fastapi import APIRouter, Body, Depends

from feedloom_core.schemas import RefreshRequest, RefreshResponse
from feedloom_core.services import IngestionService

from ..dependencies import get_current_user_id, get_ingestion_service

router = APIRouter()


@router.post("", response_model=RefreshResponse, response_model_exclude_none=True)
async def refresh_feeds(
    user_id: Annotated[str, Depends(get_current_user_id)],
    ingestion_service: Annotated[IngestionService, Depends(get_ingestion_service)],
    data: Annotated[RefreshRequest | None, Body()] = None,
) -> RefreshResponse:
    """
    Refresh the caller's feeds.

    Args:
        user_id: Current authenticated user id.
        ingestion_service: Ingestion service.
        data: Optional subset of feed ids; all feeds when omitted.

    Returns:
        One result per requested feed plus the retention deleted count.
    """
    feed_ids = data.feed_ids if data else None
    return await ingestion_service.refresh_user_feeds(user_id, feed_ids)


@router.post("/{feed_id}", response_model=RefreshResponse, response_model_exclude_none=True)
async def refresh_feed(
    feed_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    ingestion_service: Annotated[IngestionService, Depends(get_ingestion_service)],
) -> RefreshResponse:
    """
    Refresh a single feed owned by the caller.

    Args:
        feed_id: Feed identifier.
        user_id: Current authenticated user id.
        ingestion_service: Ingestion service.

    Returns:
        Refresh response with one result entry.
    """
    return await ingestion_service.refresh_feed(user_id, feed_id)
