"""
Feed storage repository.

Ownership-scoped queries and writes used by the ingestion pipeline.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, case, delete, literal, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from feedloom_database.models import Feed, FeedItem, generate_uuid, utc_now

# Fields a refresh may overwrite on an existing item
CONTENT_FIELDS = ("title", "link", "content", "author", "published_at")

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

# Keeps IN (...) lists well below driver parameter limits
DELETE_CHUNK_SIZE = 500


class FeedRepository:
    """Storage operations for feeds and their items."""

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository.

        Args:
            session: Database session.
        """
        self.session = session

    async def find_feed(self, user_id: str, feed_id: str) -> Feed | None:
        """Get a feed only if it belongs to the user."""
        stmt = select(Feed).where(Feed.id == feed_id, Feed.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_user_feeds(
        self, user_id: str, feed_ids: Sequence[str] | None = None
    ) -> list[Feed]:
        """
        List a user's feeds, optionally restricted to the given ids.

        Ids the user does not own are silently excluded.
        """
        stmt = select(Feed).where(Feed.user_id == user_id)
        if feed_ids is not None:
            if not feed_ids:
                return []
            stmt = stmt.where(Feed.id.in_(list(feed_ids)))
        stmt = stmt.order_by(Feed.created_at, Feed.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def upsert_feed_item(
        self,
        feed_id: str,
        identity_key: str,
        fields: dict[str, Any],
    ) -> bool:
        """
        Insert a new item or refresh the content of an existing one.

        Relies on the (feed_id, identity_key) unique constraint: the insert
        is a no-op on conflict, after which only content fields are updated.
        ``read_at``, ``saved_at`` and ``created_at`` of an existing row are
        never modified.

        Args:
            feed_id: Owning feed.
            identity_key: GUID or fingerprint.
            fields: Item fields (guid, fingerprint and content fields).

        Returns:
            True if a new row was inserted.
        """
        dialect = self.session.get_bind().dialect.name
        try:
            insert = _INSERT_BY_DIALECT[dialect]
        except KeyError:
            raise RuntimeError(f"Unsupported database dialect for upsert: {dialect}")

        now = utc_now()
        values = {
            "id": generate_uuid(),
            "feed_id": feed_id,
            "identity_key": identity_key,
            "guid": fields.get("guid"),
            "fingerprint": fields.get("fingerprint"),
            "created_at": now,
            "updated_at": now,
            **{name: fields.get(name) for name in CONTENT_FIELDS},
        }
        stmt = (
            insert(FeedItem)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["feed_id", "identity_key"])
            .returning(FeedItem.id)
        )
        result = await self.session.execute(stmt)
        if result.scalar_one_or_none() is not None:
            return True

        content = {name: fields.get(name) for name in CONTENT_FIELDS}
        await self.session.execute(
            update(FeedItem)
            .where(FeedItem.feed_id == feed_id, FeedItem.identity_key == identity_key)
            .values(**content, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return False

    async def update_feed_fetch_state(self, feed_id: str, values: dict[str, Any]) -> None:
        """
        Update a feed's fetch state columns.

        ``last_fetched_at`` in ``values`` is applied only when it is later
        than the stored value.
        """
        values = dict(values)
        fetched_at: datetime | None = values.pop("last_fetched_at", None)
        if fetched_at is not None:
            new_value = literal(fetched_at, DateTime(timezone=True))
            values["last_fetched_at"] = case(
                (
                    or_(Feed.last_fetched_at.is_(None), Feed.last_fetched_at < new_value),
                    new_value,
                ),
                else_=Feed.last_fetched_at,
            )
        values["updated_at"] = utc_now()

        await self.session.execute(
            update(Feed)
            .where(Feed.id == feed_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def delete_items(self, item_ids: Sequence[str]) -> int:
        """Delete items by id. Returns the number of rows deleted."""
        deleted = 0
        ids = list(item_ids)
        for start in range(0, len(ids), DELETE_CHUNK_SIZE):
            chunk = ids[start : start + DELETE_CHUNK_SIZE]
            result = await self.session.execute(
                delete(FeedItem)
                .where(FeedItem.id.in_(chunk))
                .execution_options(synchronize_session=False)
            )
            deleted += result.rowcount or 0
        return deleted
