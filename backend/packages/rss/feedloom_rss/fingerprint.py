"""
Content fingerprints for feed items.

Feeds that omit GUIDs (or publish unstable ones) still need a stable
identity so repeated refreshes do not store duplicates. The fingerprint
is a SHA-256 digest over the normalized link, title, content, author
and publication date.
"""

import hashlib
from datetime import UTC, datetime
from typing import Protocol

from .text import normalize_text, strip_html_to_text

FINGERPRINT_DELIMITER = "|"


class FingerprintSource(Protocol):
    """Fields a fingerprint is derived from."""

    link: str | None
    title: str | None
    content: str | None
    author: str | None
    published_at: datetime | None


class IdentitySource(FingerprintSource, Protocol):
    """Fingerprint fields plus the upstream GUID."""

    guid: str | None


def _canonical_timestamp(value: datetime | None) -> str:
    if value is None:
        return ""
    # Naive datetimes are treated as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds")


def compute_fingerprint(item: FingerprintSource) -> str:
    """
    Compute the content fingerprint of a feed item.

    Args:
        item: Parsed feed item (or any object with the same fields).

    Returns:
        64-character lowercase hex digest.
    """
    payload = FINGERPRINT_DELIMITER.join(
        [
            normalize_text(item.link),
            normalize_text(item.title),
            normalize_text(strip_html_to_text(item.content)),
            normalize_text(item.author),
            _canonical_timestamp(item.published_at),
        ]
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def resolve_identity_key(item: IdentitySource) -> str:
    """
    Resolve the identity key used to deduplicate a feed item.

    The upstream GUID takes precedence whenever it is non-empty; the
    fingerprint is only used as a fallback. A feed that reuses one GUID
    for different articles therefore collapses them into one stored item.
    """
    if item.guid and item.guid.strip():
        return item.guid.strip()
    return compute_fingerprint(item)
