"""
Pydantic schemas package.

Request and response models shared by the API and worker.
"""

from .refresh import FeedRefreshResult, RefreshRequest, RefreshResponse

__all__ = [
    "RefreshRequest",
    "FeedRefreshResult",
    "RefreshResponse",
]
