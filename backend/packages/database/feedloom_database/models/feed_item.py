"""
FeedItem model definition.

One ingested article belonging to a feed.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, generate_uuid


class FeedItem(Base, TimestampMixin):
    """
    Feed item model.

    ``identity_key`` is the upstream GUID when present, otherwise the
    content fingerprint. (feed_id, identity_key) is unique, which makes
    the refresh upsert safe under concurrent refreshes of one feed.

    ``created_at`` is the first-seen time. ``read_at`` and ``saved_at``
    belong to the user and are never touched by a refresh; items with
    ``saved_at`` set are exempt from retention pruning.
    """

    __tablename__ = "feed_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    feed_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("feeds.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Identity
    guid: Mapped[str | None] = mapped_column(String(2000))
    fingerprint: Mapped[str | None] = mapped_column(String(64))
    identity_key: Mapped[str] = mapped_column(String(2000), nullable=False)

    # Content
    title: Mapped[str | None] = mapped_column(String(1000))
    link: Mapped[str | None] = mapped_column(String(2000))
    content: Mapped[str | None] = mapped_column(Text)
    author: Mapped[str | None] = mapped_column(String(500))
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # User state
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    saved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    feed = relationship("Feed", back_populates="items")

    __table_args__ = (
        UniqueConstraint("feed_id", "identity_key", name="uq_feed_items_feed_identity"),
        Index("ix_feed_items_feed_saved", "feed_id", "saved_at"),
        Index("ix_feed_items_feed_published", "feed_id", "published_at"),
    )
