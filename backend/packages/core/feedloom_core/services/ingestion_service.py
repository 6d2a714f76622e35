"""
Feed ingestion service.

Drives feed refreshes: fetch, parse, resolve item identity, upsert,
and prune. A batch refresh fans out over a user's feeds with a fixed
pool of workers so the number of simultaneous outbound fetches stays
bounded however many feeds the user has.

Each feed is refreshed in its own database session and its own worker,
so one feed's failure is captured into its result entry and never
affects sibling feeds.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feedloom_core import get_logger
from feedloom_core.config import IngestionSettings, settings
from feedloom_core.errors import (
    CANCELLED,
    NOT_FOUND,
    TIMEOUT,
    RetentionError,
    error_message,
    normalize_feed_error,
)
from feedloom_core.schemas import FeedRefreshResult, RefreshResponse
from feedloom_database.models import FetchStatus, utc_now
from feedloom_rss import (
    FeedParser,
    FetchResult,
    ParsedFeed,
    SafeFetcher,
    resolve_identity_key,
)

from .feed_repository import FeedRepository
from .retention_service import RetentionService

logger = get_logger(__name__)

NO_FEEDS_MESSAGE = "No feeds to refresh"

# Column limits of the feeds/feed_items tables
_FEED_TITLE_MAX = 500
_FEED_DESCRIPTION_MAX = 2000
_ITEM_LIMITS = {
    "guid": 2000,
    "title": 1000,
    "link": 2000,
    "author": 500,
}


def _clip(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    return value[:limit]


@dataclass(frozen=True)
class FeedSnapshot:
    """Fetch inputs of one feed, detached from any session."""

    id: str
    url: str
    etag: str | None
    last_modified: str | None


@dataclass
class FeedOutcome:
    """Result of refreshing one feed plus items pruned on its behalf."""

    result: FeedRefreshResult
    pruned_count: int = 0


def _error_result(feed_id: str, feed_url: str, code: str, message: str) -> FeedRefreshResult:
    return FeedRefreshResult(
        feed_id=feed_id,
        feed_url=feed_url,
        new_item_count=0,
        status="error",
        error_code=code,
        error_message=message,
    )


class IngestionService:
    """Feed refresh orchestrator."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fetcher: SafeFetcher | None = None,
        parser: FeedParser | None = None,
        config: IngestionSettings | None = None,
    ):
        """
        Initialize ingestion service.

        Args:
            session_factory: Factory for per-feed database sessions.
            fetcher: Network fetcher (defaults to a SafeFetcher).
            parser: Feed parser (defaults to a FeedParser).
            config: Ingestion settings (defaults to the global settings).
        """
        self.session_factory = session_factory
        self.config = config or settings
        self.fetcher = fetcher or SafeFetcher(user_agent=self.config.fetch_user_agent)
        self.parser = parser or FeedParser()

    async def refresh_feed(
        self, user_id: str, feed_id: str, retention_cap: int | None = None
    ) -> RefreshResponse:
        """
        Refresh one feed owned by the user.

        Args:
            user_id: Requesting user.
            feed_id: Feed to refresh.
            retention_cap: Retention cap (defaults to the configured cap).

        Returns:
            Refresh response with a single result entry.
        """
        cap = self._cap(retention_cap)
        async with self.session_factory() as session:
            feed = await FeedRepository(session).find_feed(user_id, feed_id)
            snapshot = self._snapshot(feed) if feed else None

        if snapshot is None:
            return RefreshResponse(
                results=[_error_result(feed_id, "", NOT_FOUND, error_message(NOT_FOUND))]
            )

        outcome = await self._refresh_one(user_id, snapshot, cap, always_prune=True)
        return RefreshResponse(
            results=[outcome.result], retention_deleted_count=outcome.pruned_count
        )

    async def _refresh_one(
        self, user_id: str, feed: FeedSnapshot, cap: int, always_prune: bool = False
    ) -> FeedOutcome:
        """Run the refresh state machine for one feed. Never raises for feed errors."""
        try:
            fetched = await self.fetcher.fetch(
                feed.url,
                etag=feed.etag,
                last_modified=feed.last_modified,
                timeout_ms=self.config.fetch_timeout_ms,
                retries=self.config.fetch_retries,
                max_redirects=self.config.fetch_max_redirects,
                max_bytes=self.config.fetch_max_bytes,
            )

            if fetched.not_modified:
                await self._record_not_modified(feed, fetched)
                return FeedOutcome(
                    FeedRefreshResult(
                        feed_id=feed.id,
                        feed_url=feed.url,
                        new_item_count=0,
                        status="success",
                        fetch_state="not_modified",
                    )
                )

            parsed = await asyncio.to_thread(self.parser.parse, fetched.text or "")
            new_item_count = await self._store_items(feed, parsed, fetched)
        except Exception as e:
            return FeedOutcome(await self._record_failure(feed, e))

        pruned = 0
        if always_prune or new_item_count > 0:
            pruned = await self._prune_feed(user_id, feed.id, cap)

        return FeedOutcome(
            FeedRefreshResult(
                feed_id=feed.id,
                feed_url=feed.url,
                new_item_count=new_item_count,
                status="success",
                fetch_state="updated",
            ),
            pruned_count=pruned,
        )

    async def _record_not_modified(self, feed: FeedSnapshot, fetched: FetchResult) -> None:
        async with self.session_factory() as session:
            await FeedRepository(session).update_feed_fetch_state(
                feed.id,
                self._success_values(
                    utc_now(),
                    etag=fetched.etag or feed.etag,
                    last_modified=fetched.last_modified or feed.last_modified,
                ),
            )
            await session.commit()

    async def _store_items(
        self, feed: FeedSnapshot, parsed: ParsedFeed, fetched: FetchResult
    ) -> int:
        """Upsert parsed items and mark the feed fetched. Returns the inserted count."""
        new_item_count = 0
        async with self.session_factory() as session:
            repository = FeedRepository(session)

            for item in parsed.items:
                guid = _clip(item.guid, _ITEM_LIMITS["guid"])
                identity_key = _clip(resolve_identity_key(item), _ITEM_LIMITS["guid"])
                fingerprint = None if guid else identity_key
                fields: dict[str, Any] = {
                    "guid": guid,
                    "fingerprint": fingerprint,
                    "title": _clip(item.title, _ITEM_LIMITS["title"]),
                    "link": _clip(item.link, _ITEM_LIMITS["link"]),
                    "content": item.content,
                    "author": _clip(item.author, _ITEM_LIMITS["author"]),
                    "published_at": item.published_at,
                }
                if await repository.upsert_feed_item(feed.id, identity_key, fields):
                    new_item_count += 1

            values = self._success_values(
                utc_now(), etag=fetched.etag, last_modified=fetched.last_modified
            )
            if parsed.title:
                values["title"] = _clip(parsed.title, _FEED_TITLE_MAX)
            if parsed.description:
                values["description"] = _clip(parsed.description, _FEED_DESCRIPTION_MAX)
            await repository.update_feed_fetch_state(feed.id, values)
            await session.commit()

        logger.info(
            "Feed refreshed",
            extra={
                "feed_id": feed.id,
                "items": len(parsed.items),
                "new_items": new_item_count,
            },
        )
        return new_item_count

    async def _record_failure(self, feed: FeedSnapshot, error: Exception) -> FeedRefreshResult:
        """Store the error on the feed row and build the error result."""
        normalized = normalize_feed_error(error)
        logger.warning(
            "Feed refresh failed",
            extra={
                "feed_id": feed.id,
                "feed_url": feed.url,
                "code": normalized.code,
                "error": str(error),
            },
        )

        try:
            async with self.session_factory() as session:
                await FeedRepository(session).update_feed_fetch_state(
                    feed.id,
                    {
                        "last_fetch_status": FetchStatus.ERROR.value,
                        "last_fetch_error_code": normalized.code,
                        "last_fetch_error_message": normalized.message,
                        "last_fetch_error_at": utc_now(),
                    },
                )
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Failed to record feed error", extra={"feed_id": feed.id})

        return _error_result(feed.id, feed.url, normalized.code, normalized.message)

    async def _prune_feed(self, user_id: str, feed_id: str, cap: int) -> int:
        try:
            async with self.session_factory() as session:
                return await RetentionService(session).prune_feed(user_id, feed_id, cap)
        except RetentionError:
            logger.exception(
                "retention_error", extra={"user_id": user_id, "feed_id": feed_id}
            )
            return 0

    @staticmethod
    def _success_values(
        fetched_at: datetime, etag: str | None, last_modified: str | None
    ) -> dict[str, Any]:
        return {
            "last_fetched_at": fetched_at,
            "etag": etag,
            "last_modified": last_modified,
            "last_fetch_status": FetchStatus.SUCCESS.value,
            "last_fetch_error_code": None,
            "last_fetch_error_message": None,
            "last_fetch_error_at": None,
        }

    async def refresh_user_feeds(
        self,
        user_id: str,
        feed_ids: Sequence[str] | None = None,
        retention_cap: int | None = None,
        deadline_seconds: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RefreshResponse:
        """
        Refresh a user's feeds with bounded concurrency.

        Args:
            user_id: Requesting user (already authenticated).
            feed_ids: Feeds to refresh; all of the user's feeds when None.
            retention_cap: Retention cap (defaults to the configured cap).
            deadline_seconds: Overall deadline (defaults to the configured deadline).
            cancel_event: Setting this event cancels the feeds still in flight.

        Returns:
            One result per requested feed plus the retention deleted count.
            Feed-level errors are reported in the results, never raised.
        """
        cap = self._cap(retention_cap)
        if deadline_seconds is None:
            deadline_seconds = self.config.refresh_deadline_seconds
        requested = list(dict.fromkeys(feed_ids)) if feed_ids is not None else None

        retention_deleted = await self._prune_user(user_id, cap, only_if_needed=True)

        async with self.session_factory() as session:
            feeds = await FeedRepository(session).list_user_feeds(user_id, requested)
            snapshots = [self._snapshot(feed) for feed in feeds]

        if not snapshots and not requested:
            return RefreshResponse(
                results=[], retention_deleted_count=retention_deleted, message=NO_FEEDS_MESSAGE
            )

        outcomes, interrupted_code = await self._run_pool(
            user_id, snapshots, cap, deadline_seconds, cancel_event
        )

        results: list[FeedRefreshResult] = []
        by_id = {snapshot.id: snapshot for snapshot in snapshots}
        for feed_id in requested if requested is not None else list(by_id):
            snapshot = by_id.get(feed_id)
            if snapshot is None:
                results.append(_error_result(feed_id, "", NOT_FOUND, error_message(NOT_FOUND)))
                continue
            outcome = outcomes.get(feed_id)
            if outcome is None:
                code = interrupted_code or CANCELLED
                results.append(_error_result(feed_id, snapshot.url, code, error_message(code)))
                continue
            retention_deleted += outcome.pruned_count
            results.append(outcome.result)

        retention_deleted += await self._prune_user(user_id, cap)

        response = RefreshResponse(results=results, retention_deleted_count=retention_deleted)
        logger.info(
            "Batch refresh finished",
            extra={
                "user_id": user_id,
                "feeds": len(results),
                "errors": sum(1 for r in results if r.status == "error"),
                "new_items": response.total_new_items,
                "retention_deleted": retention_deleted,
            },
        )
        return response

    async def _run_pool(
        self,
        user_id: str,
        snapshots: list[FeedSnapshot],
        cap: int,
        deadline: float,
        cancel_event: asyncio.Event | None,
    ) -> tuple[dict[str, FeedOutcome], str | None]:
        """
        Refresh feeds with a fixed number of workers.

        Returns:
            Outcomes keyed by feed id, and the error code to report for
            feeds left unfinished (None when everything finished).
        """
        outcomes: dict[str, FeedOutcome] = {}
        if not snapshots:
            return outcomes, None

        queue: asyncio.Queue[FeedSnapshot] = asyncio.Queue()
        for snapshot in snapshots:
            queue.put_nowait(snapshot)

        async def worker() -> None:
            while True:
                try:
                    snapshot = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                outcomes[snapshot.id] = await self._refresh_one(user_id, snapshot, cap)

        pool_size = min(self.config.refresh_concurrency, len(snapshots))
        workers = asyncio.gather(
            *(worker() for _ in range(pool_size)), return_exceptions=True
        )
        waiters: set[asyncio.Future[Any]] = {workers}
        stopper: asyncio.Future[Any] | None = None
        if cancel_event is not None:
            stopper = asyncio.ensure_future(cancel_event.wait())
            waiters.add(stopper)

        interrupted_code: str | None = None
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=deadline, return_when=asyncio.FIRST_COMPLETED
            )
            if workers not in done:
                interrupted_code = CANCELLED if stopper in done else TIMEOUT
                logger.warning(
                    "Batch refresh interrupted",
                    extra={
                        "user_id": user_id,
                        "reason": interrupted_code,
                        "finished": len(outcomes),
                        "total": len(snapshots),
                    },
                )
        finally:
            if not workers.done():
                workers.cancel()
                await asyncio.wait({workers})
                if not workers.cancelled():
                    workers.exception()  # marks the cancellation as retrieved
            if stopper is not None and not stopper.done():
                stopper.cancel()

        if interrupted_code is None:
            for error in workers.result():
                if isinstance(error, BaseException):
                    logger.error(
                        "Refresh worker crashed", exc_info=error, extra={"user_id": user_id}
                    )

        return outcomes, interrupted_code

    async def _prune_user(self, user_id: str, cap: int, only_if_needed: bool = False) -> int:
        try:
            async with self.session_factory() as session:
                retention = RetentionService(session)
                if only_if_needed and not await retention.is_purge_needed(user_id, cap):
                    return 0
                return await retention.prune_user(user_id, cap)
        except RetentionError:
            logger.exception("retention_error", extra={"user_id": user_id})
            return 0

    def _cap(self, retention_cap: int | None) -> int:
        if retention_cap is None:
            return self.config.retention_items_per_feed
        return retention_cap

    @staticmethod
    def _snapshot(feed: Any) -> FeedSnapshot:
        return FeedSnapshot(
            id=feed.id, url=feed.url, etag=feed.etag, last_modified=feed.last_modified
        )
