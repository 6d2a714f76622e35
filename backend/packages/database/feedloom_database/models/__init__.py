"""
Database models package.

This module exports all SQLAlchemy models for the Feedloom application.
"""

from .base import Base, TimestampMixin, generate_uuid, utc_now
from .feed import Feed, FetchStatus
from .feed_item import FeedItem
from .user import User

__all__ = [
    "Base",
    "TimestampMixin",
    "generate_uuid",
    "utc_now",
    "User",
    "Feed",
    "FetchStatus",
    "FeedItem",
]
