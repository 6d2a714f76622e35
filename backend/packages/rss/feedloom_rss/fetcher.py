"""
Safe feed fetcher.

Fetches remote feed documents with SSRF protection, conditional request
support, manual redirect handling and bounded retries.

Every hop (the initial URL and each redirect target) is resolved and
checked against private, loopback, link-local, multicast and reserved
address ranges before any request is issued to it.
"""

import asyncio
import ipaddress
import random
import socket
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Literal
from urllib.parse import urljoin, urlsplit

import httpx

from feedloom_core import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_MS = 15_000
DEFAULT_RETRIES = 2
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_USER_AGENT = "Feedloom/1.0"
DEFAULT_ACCEPT_HEADER = (
    "application/rss+xml,application/atom+xml,application/xml,text/xml;q=0.9,*/*;q=0.1"
)

REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})
RETRYABLE_STATUS_CODES = frozenset({408, 429})

BACKOFF_BASE_MS = 200
BACKOFF_MAX_MS = 2_000
BACKOFF_JITTER_MS = 100

METADATA_HOSTNAMES = frozenset({"metadata", "metadata.google.internal", "metadata.goog"})

BLOCKED_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.0.0.0/24",
        "192.0.2.0/24",
        "192.168.0.0/16",
        "198.18.0.0/15",
        "198.51.100.0/24",
        "203.0.113.0/24",
        "224.0.0.0/4",
        "240.0.0.0/4",
        "::/128",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
        "ff00::/8",
        "2001:db8::/32",
    )
)

Resolver = Callable[[str], Awaitable[list[str]]]


class FetchErrorKind(str, Enum):
    """Fetch failure kinds."""

    BLOCKED = "blocked"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    HTTP_ERROR = "http_error"
    TOO_MANY_REDIRECTS = "too_many_redirects"
    TOO_LARGE = "too_large"


class FeedFetchError(Exception):
    """Raised when a feed cannot be fetched."""

    def __init__(self, kind: FetchErrorKind, message: str, status_code: int | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Whether another attempt may succeed."""
        if self.kind in (FetchErrorKind.TIMEOUT, FetchErrorKind.NETWORK_ERROR):
            return True
        if self.kind == FetchErrorKind.HTTP_ERROR and self.status_code is not None:
            return self.status_code in RETRYABLE_STATUS_CODES or self.status_code >= 500
        return False


@dataclass
class FetchResult:
    """Result of a successful fetch (including 304 Not Modified)."""

    status: Literal["ok", "not_modified"]
    etag: str | None
    last_modified: str | None
    final_url: str
    status_code: int
    text: str | None = None

    @property
    def not_modified(self) -> bool:
        return self.status == "not_modified"


async def resolve_host(hostname: str) -> list[str]:
    """
    Resolve a hostname to all of its IP addresses.

    Raises:
        FeedFetchError: If resolution fails.
    """
    loop = asyncio.get_running_loop()
    try:
        records = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise FeedFetchError(FetchErrorKind.NETWORK_ERROR, f"Unable to resolve host: {e}")
    return [str(sockaddr[0]) for *_, sockaddr in records]


def is_blocked_hostname(hostname: str) -> bool:
    """Check hostnames that always point at local or metadata services."""
    if hostname == "localhost" or hostname.endswith(".localhost"):
        return True
    if hostname == "metadata" or hostname.endswith(".metadata"):
        return True
    return hostname in METADATA_HOSTNAMES


def is_blocked_address(address: str) -> bool:
    """Check whether an IP address falls in a non-routable range."""
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return True

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped

    return any(ip.version == network.version and ip in network for network in BLOCKED_NETWORKS)


def _is_ip_literal(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def backoff_delay(attempt: int, jitter: float | None = None) -> float:
    """
    Exponential backoff with jitter, in seconds.

    Args:
        attempt: Zero-based index of the attempt that just failed.
        jitter: Jitter fraction in [0, 1); random when omitted.
    """
    if jitter is None:
        jitter = random.random()
    delay_ms = BACKOFF_BASE_MS * 2**attempt + int(jitter * BACKOFF_JITTER_MS)
    return min(BACKOFF_MAX_MS, delay_ms) / 1000


class SafeFetcher:
    """
    SSRF-resistant HTTP fetcher for feed documents.

    Holds no per-call state, so one instance can serve concurrent
    refreshes. The resolver, transport and sleep function are injectable
    for tests.
    """

    def __init__(
        self,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        accept: str = DEFAULT_ACCEPT_HEADER,
        resolver: Resolver | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.user_agent = user_agent
        self.accept = accept
        self._resolver = resolver or resolve_host
        self._transport = transport
        self._sleep = sleep

    async def assert_safe_url(self, raw_url: str) -> str:
        """
        Validate a URL and its resolved addresses.

        Args:
            raw_url: Absolute URL to validate.

        Returns:
            The validated URL.

        Raises:
            FeedFetchError: If the URL is invalid or targets a blocked host.
        """
        try:
            parsed = urlsplit(raw_url)
            hostname = parsed.hostname
        except ValueError:
            raise FeedFetchError(FetchErrorKind.BLOCKED, "Invalid URL")

        if parsed.scheme not in ("http", "https"):
            raise FeedFetchError(FetchErrorKind.BLOCKED, "Only HTTP(S) URLs are allowed")
        if not hostname:
            raise FeedFetchError(FetchErrorKind.BLOCKED, "Invalid URL")
        if parsed.username or parsed.password:
            raise FeedFetchError(FetchErrorKind.BLOCKED, "URLs with credentials are not allowed")

        hostname = hostname.lower().rstrip(".")

        if is_blocked_hostname(hostname):
            logger.warning("feed.fetch.blocked", extra={"hostname": hostname})
            raise FeedFetchError(FetchErrorKind.BLOCKED, "Blocked host")

        if _is_ip_literal(hostname):
            addresses = [hostname]
        else:
            addresses = await self._resolver(hostname)

        if not addresses:
            raise FeedFetchError(FetchErrorKind.NETWORK_ERROR, "Unable to resolve host")

        for address in addresses:
            if is_blocked_address(address):
                logger.warning(
                    "feed.fetch.blocked",
                    extra={"hostname": hostname, "resolved_ip": address},
                )
                raise FeedFetchError(FetchErrorKind.BLOCKED, "Blocked private or reserved IP")

        return raw_url

    async def fetch(
        self,
        url: str,
        *,
        etag: str | None = None,
        last_modified: str | None = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        retries: int = DEFAULT_RETRIES,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> FetchResult:
        """
        Fetch a feed document.

        Args:
            url: Feed URL.
            etag: Stored ETag, sent as If-None-Match.
            last_modified: Stored Last-Modified, sent as If-Modified-Since.
            timeout_ms: Per-attempt timeout covering DNS, connect and read.
            retries: Extra attempts for timeouts, network errors and 5xx/408/429.
            max_redirects: Maximum redirect hops to follow.
            max_bytes: Largest response body accepted, after decompression.

        Returns:
            FetchResult with status "ok" or "not_modified".

        Raises:
            FeedFetchError: If the fetch fails after all permitted attempts.
        """
        retries = max(0, retries)
        max_redirects = max(0, max_redirects)

        headers = {"User-Agent": self.user_agent, "Accept": self.accept}
        if etag:
            headers["If-None-Match"] = etag
        if last_modified:
            headers["If-Modified-Since"] = last_modified

        attempt = 0
        while True:
            try:
                return await self._attempt(url, headers, timeout_ms, max_redirects, max_bytes)
            except FeedFetchError as e:
                if not e.retryable:
                    raise
                if attempt >= retries:
                    logger.warning(
                        "feed.fetch.retry_exhausted",
                        extra={"url": url, "attempts": attempt + 1, "kind": e.kind.value},
                    )
                    raise
                delay = backoff_delay(attempt)
                logger.info(
                    "feed.fetch.retry",
                    extra={
                        "url": url,
                        "attempt": attempt + 1,
                        "kind": e.kind.value,
                        "delay_seconds": delay,
                    },
                )
                await self._sleep(delay)
            attempt += 1

    async def _attempt(
        self,
        url: str,
        headers: dict[str, str],
        timeout_ms: int,
        max_redirects: int,
        max_bytes: int,
    ) -> FetchResult:
        timeout_seconds = timeout_ms / 1000
        try:
            async with asyncio.timeout(timeout_seconds):
                async with httpx.AsyncClient(
                    timeout=timeout_seconds,
                    follow_redirects=False,
                    transport=self._transport,
                ) as client:
                    return await self._fetch_following_redirects(
                        client, url, headers, max_redirects, max_bytes
                    )
        except TimeoutError:
            raise FeedFetchError(FetchErrorKind.TIMEOUT, "Request timed out")
        except httpx.TimeoutException as e:
            raise FeedFetchError(FetchErrorKind.TIMEOUT, f"Request timed out: {e}")
        except httpx.HTTPError as e:
            raise FeedFetchError(FetchErrorKind.NETWORK_ERROR, f"Network request failed: {e}")

    async def _fetch_following_redirects(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        max_redirects: int,
        max_bytes: int,
    ) -> FetchResult:
        current = await self.assert_safe_url(url)
        redirect_count = 0

        while True:
            request = client.build_request("GET", current, headers=headers)
            response = await client.send(request, stream=True)
            try:
                if response.status_code in REDIRECT_STATUS_CODES:
                    location = response.headers.get("location")
                    if not location:
                        raise FeedFetchError(
                            FetchErrorKind.NETWORK_ERROR,
                            "Redirect response missing location header",
                        )
                    if redirect_count >= max_redirects:
                        raise FeedFetchError(
                            FetchErrorKind.TOO_MANY_REDIRECTS, "Too many redirects"
                        )
                    next_url = urljoin(current, location)
                    redirect_count += 1
                    current = await self.assert_safe_url(next_url)
                    continue

                response_etag = response.headers.get("etag")
                response_last_modified = response.headers.get("last-modified")

                if response.status_code == 304:
                    return FetchResult(
                        status="not_modified",
                        etag=response_etag,
                        last_modified=response_last_modified,
                        final_url=current,
                        status_code=response.status_code,
                    )

                if not response.is_success:
                    raise FeedFetchError(
                        FetchErrorKind.HTTP_ERROR,
                        f"Remote request failed with status {response.status_code}",
                        status_code=response.status_code,
                    )

                body = await _read_capped(response, max_bytes)
                return FetchResult(
                    status="ok",
                    text=body.decode(response.encoding or "utf-8", errors="replace"),
                    etag=response_etag,
                    last_modified=response_last_modified,
                    final_url=current,
                    status_code=response.status_code,
                )
            finally:
                await response.aclose()


async def _read_capped(response: httpx.Response, max_bytes: int) -> bytes:
    """Read a streamed body, aborting once it grows past max_bytes."""
    too_large = FeedFetchError(
        FetchErrorKind.TOO_LARGE, f"Response body exceeds {max_bytes} bytes"
    )

    declared = response.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > max_bytes:
        raise too_large

    chunks: list[bytes] = []
    received = 0
    async for chunk in response.aiter_bytes():
        received += len(chunk)
        if received > max_bytes:
            logger.warning(
                "feed.fetch.too_large",
                extra={"url": str(response.url), "max_bytes": max_bytes},
            )
            raise too_large
        chunks.append(chunk)
    return b"".join(chunks)
