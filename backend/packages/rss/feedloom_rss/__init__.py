"""
RSS processing package.

Provides safe feed fetching, RSS/Atom parsing and content fingerprints.
"""

from .fetcher import FeedFetchError, FetchErrorKind, FetchResult, SafeFetcher
from .fingerprint import compute_fingerprint, resolve_identity_key
from .parser import FeedParseError, FeedParser, ParsedFeed, ParsedFeedItem, parse_feed

__all__ = [
    "SafeFetcher",
    "FetchResult",
    "FeedFetchError",
    "FetchErrorKind",
    "FeedParser",
    "FeedParseError",
    "ParsedFeed",
    "ParsedFeedItem",
    "parse_feed",
    "compute_fingerprint",
    "resolve_identity_key",
]
