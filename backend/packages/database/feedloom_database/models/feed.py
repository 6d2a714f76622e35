"""
Feed model definition.

This module defines the Feed model for storing a user's RSS subscription.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, generate_uuid


class FetchStatus(str, Enum):
    """Outcome of the most recent fetch."""

    SUCCESS = "success"
    ERROR = "error"


class Feed(Base, TimestampMixin):
    """
    RSS feed model.

    Each feed belongs to exactly one user. Fetch state is updated by
    every refresh.

    Attributes:
        id: Unique feed identifier (UUID).
        user_id: Owning user.
        url: Feed URL.
        title: Feed title from source.
        description: Feed description.
        etag: HTTP ETag for conditional requests.
        last_modified: HTTP Last-Modified header value.
        last_fetched_at: Timestamp of last successful fetch; only moves forward.
        last_fetch_status: Outcome of the last refresh.
        last_fetch_error_code: Machine-readable code of the last error.
        last_fetch_error_message: User-facing message of the last error.
        last_fetch_error_at: When the last error happened.
    """

    __tablename__ = "feeds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Feed metadata
    url: Mapped[str] = mapped_column(String(2000), nullable=False)
    title: Mapped[str | None] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(String(2000))

    # Conditional request headers
    etag: Mapped[str | None] = mapped_column(String(255))
    last_modified: Mapped[str | None] = mapped_column(String(255))

    # Fetch status
    last_fetched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_fetch_status: Mapped[FetchStatus | None] = mapped_column(String(20))
    last_fetch_error_code: Mapped[str | None] = mapped_column(String(50))
    last_fetch_error_message: Mapped[str | None] = mapped_column(String(1000))
    last_fetch_error_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Relationships
    user = relationship("User", back_populates="feeds")
    items = relationship(
        "FeedItem", back_populates="feed", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (UniqueConstraint("user_id", "url", name="uq_feeds_user_url"),)
