"""
Business logic services package.

This package contains the feed ingestion pipeline services.
"""

from .feed_repository import FeedRepository
from .ingestion_service import IngestionService
from .retention_service import RetentionService

__all__ = [
    "FeedRepository",
    "IngestionService",
    "RetentionService",
]
