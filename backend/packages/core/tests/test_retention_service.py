"""Tests for per-feed retention pruning."""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from feedloom_core.errors import RetentionError
from feedloom_core.services import RetentionService
from feedloom_database.models import FeedItem


async def _remaining_guids(session, feed_id: str) -> set[str]:
    result = await session.execute(select(FeedItem.guid).where(FeedItem.feed_id == feed_id))
    return set(result.scalars().all())


@pytest.mark.asyncio
async def test_prune_feed_deletes_only_the_oldest_excess(
    db_session, test_user, make_feed, make_items
):
    feed = await make_feed(test_user)
    await make_items(feed, 1003)

    deleted = await RetentionService(db_session).prune_feed(test_user.id, feed.id, 1000)

    assert deleted == 3
    remaining = await _remaining_guids(db_session, feed.id)
    assert len(remaining) == 1000
    assert {"item-0", "item-1", "item-2"}.isdisjoint(remaining)
    assert "item-3" in remaining


@pytest.mark.asyncio
async def test_saved_items_are_never_pruned(db_session, test_user, make_feed, make_items):
    feed = await make_feed(test_user)
    await make_items(feed, 5, saved=True, prefix="saved")
    await make_items(feed, 3, prefix="fresh")

    deleted = await RetentionService(db_session).prune_feed(test_user.id, feed.id, 2)

    assert deleted == 1
    remaining = await _remaining_guids(db_session, feed.id)
    assert {f"saved-{i}" for i in range(5)} <= remaining
    assert "fresh-0" not in remaining


@pytest.mark.asyncio
async def test_cap_zero_removes_every_unsaved_item(
    db_session, test_user, make_feed, make_items
):
    feed = await make_feed(test_user)
    await make_items(feed, 4)
    await make_items(feed, 1, saved=True, prefix="kept")

    deleted = await RetentionService(db_session).prune_feed(test_user.id, feed.id, 0)

    assert deleted == 4
    assert await _remaining_guids(db_session, feed.id) == {"kept-0"}


@pytest.mark.asyncio
async def test_prune_under_cap_is_noop(db_session, test_user, make_feed, make_items):
    feed = await make_feed(test_user)
    await make_items(feed, 3)

    assert await RetentionService(db_session).prune_feed(test_user.id, feed.id, 3) == 0
    assert len(await _remaining_guids(db_session, feed.id)) == 3


@pytest.mark.asyncio
async def test_prune_foreign_or_missing_feed_deletes_nothing(
    db_session, test_user, other_user, make_feed, make_items
):
    feed = await make_feed(test_user)
    await make_items(feed, 5)
    service = RetentionService(db_session)

    assert await service.prune_feed(other_user.id, feed.id, 0) == 0
    assert await service.prune_feed(test_user.id, "no-such-feed", 0) == 0
    assert len(await _remaining_guids(db_session, feed.id)) == 5


@pytest.mark.asyncio
async def test_prune_user_applies_cap_per_feed(
    db_session, test_user, other_user, make_feed, make_items
):
    first = await make_feed(test_user, url="https://example.com/a.xml")
    second = await make_feed(test_user, url="https://example.com/b.xml")
    foreign = await make_feed(other_user, url="https://example.com/c.xml")
    await make_items(first, 4)
    await make_items(second, 2)
    await make_items(foreign, 4)

    deleted = await RetentionService(db_session).prune_user(test_user.id, 2)

    assert deleted == 2
    assert await _remaining_guids(db_session, first.id) == {"item-2", "item-3"}
    assert len(await _remaining_guids(db_session, second.id)) == 2
    assert len(await _remaining_guids(db_session, foreign.id)) == 4


@pytest.mark.asyncio
async def test_is_purge_needed(db_session, test_user, make_feed, make_items):
    feed = await make_feed(test_user)
    await make_items(feed, 3)
    await make_items(feed, 5, saved=True, prefix="saved")
    service = RetentionService(db_session)

    assert await service.is_purge_needed(test_user.id, 3) is False
    assert await service.is_purge_needed(test_user.id, 2) is True


@pytest.mark.asyncio
async def test_negative_cap_rejected(db_session, test_user):
    with pytest.raises(ValueError):
        await RetentionService(db_session).prune_user(test_user.id, -1)


@pytest.mark.asyncio
async def test_storage_failure_raises_retention_error(db_session, test_user):
    service = RetentionService(db_session)
    failure = OperationalError("SELECT", {}, Exception("database is locked"))

    with (
        patch.object(db_session, "execute", AsyncMock(side_effect=failure)),
        pytest.raises(RetentionError),
    ):
        await service.prune_user(test_user.id, 10)
