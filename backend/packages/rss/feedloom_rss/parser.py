"""
RSS/Atom feed parser.

Parses RSS 1.0, RSS 2.0 and Atom feeds using feedparser. This module is
the only importer of feedparser; callers work with the ParsedFeed and
ParsedFeedItem value types defined here.
"""

import io
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import feedparser


class FeedParseError(ValueError):
    """Raised when a document is not a recognizable RSS or Atom feed."""


def _text(value: Any) -> str | None:
    """Coerce an upstream field to a stripped string, or None when empty."""
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    return value or None


def _parse_date(data: dict[str, Any]) -> datetime | None:
    """Parse the publication date from feedparser entry data."""
    published = data.get("published_parsed") or data.get("updated_parsed")
    if not published:
        return None
    try:
        return datetime(*published[:6], tzinfo=UTC)
    except (TypeError, ValueError):
        return None


@dataclass
class ParsedFeedItem:
    """Normalized feed item."""

    guid: str | None = None
    title: str | None = None
    link: str | None = None
    content: str | None = None
    author: str | None = None
    published_at: datetime | None = None

    @classmethod
    def from_entry(cls, data: dict[str, Any]) -> "ParsedFeedItem":
        """
        Build an item from feedparser entry data.

        feedparser exposes RSS <guid> and Atom <id> as "id", and folds
        content:encoded and Atom <content> into the "content" list.

        Args:
            data: Entry data from feedparser.

        Returns:
            Normalized item.
        """
        content = None
        for content_part in data.get("content") or []:
            content = _text(content_part.get("value"))
            if content:
                break
        if not content:
            content = _text(data.get("summary"))

        author = _text(data.get("author"))
        if not author:
            author = _text((data.get("author_detail") or {}).get("name"))

        return cls(
            guid=_text(data.get("id")),
            title=_text(data.get("title")),
            link=_text(data.get("link")),
            content=content,
            author=author,
            published_at=_parse_date(data),
        )


@dataclass
class ParsedFeed:
    """Parsed feed metadata and items."""

    title: str | None = None
    description: str | None = None
    site_url: str | None = None
    items: list[ParsedFeedItem] = field(default_factory=list)


class FeedParser:
    """Stateless feed parser; safe to share between concurrent refreshes."""

    def parse(self, content: str | bytes) -> ParsedFeed:
        """
        Parse RSS/Atom feed content.

        Structural variance (missing namespaces, RSS 1.0 vs 2.0 vs Atom,
        minor well-formedness errors) is tolerated as long as feedparser
        recovers entries or recognizes the feed format. A recognized feed
        with no items parses to an empty item list even when feedparser
        flagged recoverable problems such as undefined entities.

        Args:
            content: Feed document text.

        Returns:
            Parsed feed data.

        Raises:
            FeedParseError: If the content is not a recognizable feed.
        """
        if isinstance(content, str):
            content = content.encode("utf-8")

        # A file-like object keeps feedparser from treating the text as a URL or path
        data = feedparser.parse(io.BytesIO(content))
        entries = data.get("entries") or []

        if not entries and not data.get("version"):
            reason = data.get("bozo_exception") or "document is not an RSS or Atom feed"
            raise FeedParseError(f"Failed to parse feed XML: {reason}")

        feed_info = data.get("feed", {})
        return ParsedFeed(
            title=_text(feed_info.get("title")),
            description=_text(feed_info.get("description") or feed_info.get("subtitle")),
            site_url=_text(feed_info.get("link")),
            items=[ParsedFeedItem.from_entry(entry) for entry in entries],
        )


def parse_feed(content: str | bytes) -> ParsedFeed:
    """Parse feed content with a default FeedParser."""
    return FeedParser().parse(content)
