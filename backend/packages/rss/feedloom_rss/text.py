"""
Text normalization helpers.

Shared by the fingerprint engine to compare feed item fields
independently of markup, whitespace, and casing.
"""

import re

from bs4 import BeautifulSoup

_WHITESPACE_RE = re.compile(r"\s+")

# Elements whose text never reaches a reader
_INVISIBLE_TAGS = ("script", "style", "template", "noscript")


def collapse_whitespace(value: str) -> str:
    """Trim and collapse runs of whitespace into single spaces."""
    return _WHITESPACE_RE.sub(" ", value).strip()


def normalize_text(value: str | None) -> str:
    """
    Normalize a plain-text field for comparison.

    Args:
        value: Raw field value, possibly None.

    Returns:
        Trimmed, whitespace-collapsed, lowercased text ("" for None).
    """
    if not value:
        return ""
    return collapse_whitespace(value).lower()


def strip_html_to_text(content: str | None) -> str:
    """
    Strip markup from an HTML fragment and return its visible text.

    Tags are replaced by a single space so adjacent blocks do not run
    together, and HTML entities are decoded.

    Args:
        content: HTML (or plain text) content.

    Returns:
        Plain text with whitespace collapsed.
    """
    if not content:
        return ""

    soup = BeautifulSoup(content, "lxml")
    for tag in soup.find_all(_INVISIBLE_TAGS):
        tag.decompose()

    return collapse_whitespace(soup.get_text(" "))
