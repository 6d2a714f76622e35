"""Tests for feed item fingerprints and identity keys."""

import re
from dataclasses import replace
from datetime import UTC, datetime, timedelta, timezone

import pytest

from feedloom_rss import ParsedFeedItem, compute_fingerprint, resolve_identity_key
from feedloom_rss.text import normalize_text, strip_html_to_text

PUBLISHED = datetime(2026, 2, 12, 10, 0, tzinfo=UTC)


@pytest.fixture
def item() -> ParsedFeedItem:
    return ParsedFeedItem(
        title="Hello World",
        link="https://example.com/hello",
        content="<p>Hello <b>there</b></p>",
        author="Alice",
        published_at=PUBLISHED,
    )


class TestTextNormalization:
    """Test the normalization helpers."""

    def test_normalize_text(self):
        assert normalize_text("  Hello \n\t World  ") == "hello world"
        assert normalize_text(None) == ""
        assert normalize_text("") == ""

    def test_strip_html_decodes_entities_and_drops_scripts(self):
        html = "<div>Tom &amp; Jerry<script>alert(1)</script><style>p{}</style></div>"
        assert strip_html_to_text(html) == "Tom & Jerry"

    def test_strip_html_separates_blocks(self):
        assert strip_html_to_text("<p>One</p><p>Two</p>") == "One Two"


class TestComputeFingerprint:
    """Test compute_fingerprint."""

    def test_fingerprint_is_sha256_hex(self, item):
        assert re.fullmatch(r"[0-9a-f]{64}", compute_fingerprint(item))

    def test_fingerprint_is_deterministic(self, item):
        assert compute_fingerprint(item) == compute_fingerprint(replace(item))

    def test_whitespace_and_case_do_not_matter(self, item):
        variant = replace(
            item,
            title="  HELLO   world ",
            link=" HTTPS://EXAMPLE.COM/hello ",
            author="alice\n",
        )
        assert compute_fingerprint(variant) == compute_fingerprint(item)

    def test_markup_does_not_matter(self, item):
        variant = replace(item, content="Hello\n   there")
        assert compute_fingerprint(variant) == compute_fingerprint(item)

    def test_equivalent_timestamps_match(self, item):
        plus_two = timezone(timedelta(hours=2))
        variant = replace(item, published_at=datetime(2026, 2, 12, 12, 0, tzinfo=plus_two))
        naive = replace(item, published_at=datetime(2026, 2, 12, 10, 0))

        assert compute_fingerprint(variant) == compute_fingerprint(item)
        assert compute_fingerprint(naive) == compute_fingerprint(item)

    def test_guid_is_not_part_of_fingerprint(self, item):
        assert compute_fingerprint(replace(item, guid="abc")) == compute_fingerprint(item)

    @pytest.mark.parametrize(
        "changes",
        [
            {"title": "Goodbye World"},
            {"link": "https://example.com/goodbye"},
            {"content": "<p>Hello <b>again</b></p>"},
            {"author": "Bob"},
            {"published_at": PUBLISHED + timedelta(seconds=1)},
            {"published_at": None},
        ],
    )
    def test_any_semantic_change_alters_fingerprint(self, item, changes):
        assert compute_fingerprint(replace(item, **changes)) != compute_fingerprint(item)

    def test_empty_item_has_fingerprint(self):
        assert len(compute_fingerprint(ParsedFeedItem())) == 64


class TestResolveIdentityKey:
    """Test resolve_identity_key."""

    def test_guid_takes_precedence(self, item):
        assert resolve_identity_key(replace(item, guid="  guid-1 ")) == "guid-1"

    def test_same_guid_with_different_content_collapses(self, item):
        first = replace(item, guid="guid-1")
        second = replace(item, guid="guid-1", title="Completely different")
        assert resolve_identity_key(first) == resolve_identity_key(second)

    @pytest.mark.parametrize("guid", [None, "", "   "])
    def test_missing_guid_falls_back_to_fingerprint(self, item, guid):
        candidate = replace(item, guid=guid)
        assert resolve_identity_key(candidate) == compute_fingerprint(candidate)
