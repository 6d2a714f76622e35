"""
Feed refresh tasks.

Background tasks for refreshing and pruning a user's feeds.
"""

from typing import Any

from feedloom_core import get_logger
from feedloom_core.services import IngestionService, RetentionService
from feedloom_database.session import get_session_factory

logger = get_logger(__name__)


def _ingestion_service(ctx: dict[str, Any]) -> IngestionService:
    service = ctx.get("ingestion_service")
    if service is None:
        service = IngestionService(get_session_factory())
        ctx["ingestion_service"] = service
    return service


async def refresh_user_feeds_task(
    ctx: dict[str, Any], user_id: str, feed_ids: list[str] | None = None
) -> dict[str, Any]:
    """
    Refresh a user's feeds.

    Args:
        ctx: Worker context.
        user_id: Owner of the feeds.
        feed_ids: Optional subset of feeds; all feeds when omitted.

    Returns:
        Refresh response payload (camelCase keys).
    """
    logger.info(
        "Starting feed refresh task",
        extra={"user_id": user_id, "feed_count": len(feed_ids) if feed_ids else None},
    )
    response = await _ingestion_service(ctx).refresh_user_feeds(user_id, feed_ids)
    return response.to_payload()


async def prune_user_feeds_task(
    ctx: dict[str, Any], user_id: str, cap: int | None = None
) -> dict[str, Any]:
    """
    Apply the retention cap to every feed of a user.

    Args:
        ctx: Worker context.
        user_id: Owner of the feeds.
        cap: Retention cap; the configured cap when omitted.

    Returns:
        Dictionary with the deleted item count.
    """
    service = _ingestion_service(ctx)
    if cap is None:
        cap = service.config.retention_items_per_feed

    async with service.session_factory() as session:
        retention = RetentionService(session)
        if not await retention.is_purge_needed(user_id, cap):
            return {"status": "success", "user_id": user_id, "deleted": 0}
        deleted = await retention.prune_user(user_id, cap)

    return {"status": "success", "user_id": user_id, "deleted": deleted}
