"""
Feed item retention service.

Keeps a bounded article history: each feed retains at most ``cap``
unsaved items, and the oldest excess items are deleted. Items the user
saved are never pruned. Every query is scoped through the owning feed,
so pruning a feed the user does not own deletes nothing.
"""

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedloom_core import get_logger
from feedloom_core.errors import RetentionError
from feedloom_database.models import Feed, FeedItem

from .feed_repository import FeedRepository

logger = get_logger(__name__)


class RetentionService:
    """Per-feed retention cap enforcement."""

    def __init__(self, session: AsyncSession):
        """
        Initialize retention service.

        Args:
            session: Database session.
        """
        self.session = session
        self.repository = FeedRepository(session)

    def _excess_item_ids(self, user_id: str, cap: int, feed_id: str | None = None):
        """Select ids of unsaved items ranked beyond the cap in their feed."""
        item_rank = (
            func.row_number()
            .over(
                partition_by=FeedItem.feed_id,
                order_by=(
                    func.coalesce(FeedItem.published_at, FeedItem.created_at).desc(),
                    FeedItem.id.desc(),
                ),
            )
            .label("item_rank")
        )
        ranked = (
            select(FeedItem.id, item_rank)
            .join(Feed, Feed.id == FeedItem.feed_id)
            .where(Feed.user_id == user_id, FeedItem.saved_at.is_(None))
        )
        if feed_id is not None:
            ranked = ranked.where(FeedItem.feed_id == feed_id)
        ranked = ranked.subquery()
        return select(ranked.c.id).where(ranked.c.item_rank > cap)

    async def _prune(self, user_id: str, cap: int, feed_id: str | None) -> int:
        if cap < 0:
            raise ValueError("Retention cap must be non-negative")
        try:
            result = await self.session.execute(self._excess_item_ids(user_id, cap, feed_id))
            item_ids = list(result.scalars().all())
            if not item_ids:
                return 0
            deleted = await self.repository.delete_items(item_ids)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise RetentionError(f"Failed to prune feed items: {e}") from e

        logger.info(
            "Pruned feed items",
            extra={"user_id": user_id, "feed_id": feed_id, "deleted": deleted, "cap": cap},
        )
        return deleted

    async def prune_feed(self, user_id: str, feed_id: str, cap: int) -> int:
        """
        Delete the oldest unsaved items of one feed beyond the cap.

        Args:
            user_id: Requesting user; must own the feed.
            feed_id: Feed to prune.
            cap: Maximum unsaved items to keep.

        Returns:
            Number of items deleted (0 for unknown or foreign feeds).

        Raises:
            RetentionError: If the storage operation fails.
        """
        return await self._prune(user_id, cap, feed_id)

    async def prune_user(self, user_id: str, cap: int) -> int:
        """
        Apply the retention cap to every feed the user owns.

        Returns:
            Number of items deleted.

        Raises:
            RetentionError: If the storage operation fails.
        """
        return await self._prune(user_id, cap, None)

    async def is_purge_needed(self, user_id: str, cap: int) -> bool:
        """
        Check whether any of the user's feeds exceeds the cap.

        Read-only; lets callers skip the prune pass cheaply.
        """
        stmt = (
            select(FeedItem.feed_id)
            .join(Feed, Feed.id == FeedItem.feed_id)
            .where(Feed.user_id == user_id, FeedItem.saved_at.is_(None))
            .group_by(FeedItem.feed_id)
            .having(func.count(FeedItem.id) > cap)
            .limit(1)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise RetentionError(f"Failed to check retention: {e}") from e
        return result.first() is not None
