"""
Feed error taxonomy.

Translates fetcher, parser and storage failures into stable
machine-readable codes and calm user-facing messages.
"""

from dataclasses import dataclass

from feedloom_rss import FeedFetchError, FeedParseError, FetchErrorKind

# Error codes surfaced in refresh results and stored on the feed row
BLOCKED = "blocked"
TIMEOUT = "timeout"
NETWORK_ERROR = "network_error"
HTTP_ERROR = "http_error"
HTTP_404 = "http_404"
TOO_MANY_REDIRECTS = "too_many_redirects"
TOO_LARGE = "too_large"
INVALID_XML = "invalid_xml"
CANCELLED = "cancelled"
NOT_FOUND = "not_found"
UNREACHABLE = "unreachable"


class RetentionError(Exception):
    """Raised when pruning fails. Never fails the refresh itself."""


@dataclass(frozen=True)
class NormalizedFeedError:
    """Stable error code plus a human-readable message."""

    code: str
    message: str


_MESSAGES = {
    BLOCKED: "This feed points to a network address that is not allowed.",
    TIMEOUT: "This feed could not be updated. The server did not respond in time. This is usually temporary.",
    NETWORK_ERROR: "This feed could not be updated because the network request failed.",
    HTTP_ERROR: "This feed could not be updated. The server returned an error.",
    HTTP_404: "This feed could not be reached. The server returned a 404, which usually means the feed URL changed or no longer exists.",
    TOO_MANY_REDIRECTS: "This feed redirects too many times to be followed.",
    TOO_LARGE: "This feed is too large to be processed.",
    INVALID_XML: "This feed returned content that is not valid RSS or Atom XML.",
    CANCELLED: "This feed refresh was cancelled before it finished.",
    NOT_FOUND: "This feed was not found.",
    UNREACHABLE: "This feed could not be updated right now.",
}

_FETCH_KIND_CODES = {
    FetchErrorKind.BLOCKED: BLOCKED,
    FetchErrorKind.TIMEOUT: TIMEOUT,
    FetchErrorKind.NETWORK_ERROR: NETWORK_ERROR,
    FetchErrorKind.HTTP_ERROR: HTTP_ERROR,
    FetchErrorKind.TOO_MANY_REDIRECTS: TOO_MANY_REDIRECTS,
    FetchErrorKind.TOO_LARGE: TOO_LARGE,
}


def resolve_error_code(error: BaseException) -> str:
    """Map an exception to a stable error code."""
    if isinstance(error, FeedFetchError):
        if error.kind == FetchErrorKind.HTTP_ERROR and error.status_code == 404:
            return HTTP_404
        return _FETCH_KIND_CODES[error.kind]
    if isinstance(error, FeedParseError):
        return INVALID_XML
    if isinstance(error, TimeoutError):
        return TIMEOUT
    return UNREACHABLE


def error_message(code: str) -> str:
    """Return the user-facing message for an error code."""
    return _MESSAGES.get(code, _MESSAGES[UNREACHABLE])


def normalize_feed_error(error: BaseException) -> NormalizedFeedError:
    """
    Translate a fetch/parse failure into a stable code and calm message.

    Args:
        error: The raised exception.

    Returns:
        Normalized error.
    """
    code = resolve_error_code(error)
    return NormalizedFeedError(code=code, message=error_message(code))
