"""Global pytest fixtures for testing."""

import contextlib
import os
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import dotenv
import httpx
import pytest
import pytest_asyncio
from fastapi import Header, HTTPException, status
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from feedloom_api.dependencies import get_current_user_id, get_ingestion_service
from feedloom_api.main import create_app
from feedloom_core.services import IngestionService
from feedloom_database import Base
from feedloom_database.models import Feed, FeedItem, User
from feedloom_rss import SafeFetcher

with contextlib.suppress(OSError):
    dotenv.load_dotenv()

# Public address returned by the fake resolver (example.com)
PUBLIC_IP = "93.184.216.34"

SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <item>
      <title>First Article</title>
      <link>https://example.com/article-1</link>
      <guid>article-1</guid>
      <description>Description of the first article</description>
      <content:encoded><![CDATA[<p>Full <b>first</b> article</p>]]></content:encoded>
      <dc:creator>Alice</dc:creator>
      <pubDate>Thu, 12 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
      <pubDate>Thu, 12 Feb 2026 09:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <subtitle>A test Atom feed</subtitle>
  <id>urn:uuid:feed</id>
  <updated>2026-02-13T10:00:00Z</updated>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <author><name>Bob</name></author>
    <summary>Summary of entry 1</summary>
    <content type="html">&lt;p&gt;Content of entry 1&lt;/p&gt;</content>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_NO_GUID_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>No GUID Feed</title>
    <item>
      <title>Untagged One</title>
      <link>https://example.com/one</link>
      <description>First body</description>
    </item>
    <item>
      <title>Untagged Two</title>
      <link>https://example.com/two</link>
      <description>Second body</description>
    </item>
  </channel>
</rss>"""

SAMPLE_NOT_A_FEED = "<html><head><title>Nope</title></head><body><p>Not a feed</p></body></html>"


@pytest_asyncio.fixture
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a file-backed SQLite engine with all tables."""
    database_url = os.getenv(
        "TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'feedloom_test.db'}"
    )
    engine = create_async_engine(
        database_url,
        echo=False,
        poolclass=NullPool,  # One connection per session, like a real pool
        connect_args={"timeout": 30} if database_url.startswith("sqlite") else {},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user."""
    user = User(email="test@example.com")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    """Create a second user who owns nothing of test_user's."""
    user = User(email="other@example.com")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
def make_feed(db_session: AsyncSession) -> Callable:
    """Factory creating feeds for a user."""

    async def _make_feed(user: User, url: str = "https://example.com/feed.xml", **kwargs) -> Feed:
        feed = Feed(user_id=user.id, url=url, **kwargs)
        db_session.add(feed)
        await db_session.commit()
        return feed

    return _make_feed


@pytest.fixture
def make_items(db_session: AsyncSession) -> Callable:
    """Factory inserting numbered items into a feed, oldest first."""

    async def _make_items(
        feed: Feed,
        count: int,
        start: datetime = datetime(2026, 1, 1, tzinfo=UTC),
        saved: bool = False,
        prefix: str = "item",
    ) -> list[FeedItem]:
        items = [
            FeedItem(
                feed_id=feed.id,
                guid=f"{prefix}-{index}",
                identity_key=f"{prefix}-{index}",
                title=f"{prefix} {index}",
                published_at=start + timedelta(minutes=index),
                saved_at=start if saved else None,
            )
            for index in range(count)
        ]
        db_session.add_all(items)
        await db_session.commit()
        return items

    return _make_items


@pytest.fixture
def feed_samples() -> SimpleNamespace:
    """Sample feed documents."""
    return SimpleNamespace(
        rss=SAMPLE_RSS_XML,
        atom=SAMPLE_ATOM_XML,
        no_guid=SAMPLE_NO_GUID_RSS_XML,
        not_a_feed=SAMPLE_NOT_A_FEED,
    )


@pytest.fixture
def make_resolver() -> Callable:
    """Factory for fake DNS resolvers; unknown hosts resolve to a public IP."""

    def _make_resolver(mapping: dict[str, list[str]] | None = None):
        mapping = mapping or {}
        calls: list[str] = []

        async def _resolve(hostname: str) -> list[str]:
            calls.append(hostname)
            return mapping.get(hostname, [PUBLIC_IP])

        _resolve.calls = calls  # type: ignore[attr-defined]
        return _resolve

    return _make_resolver


@pytest.fixture
def make_fetcher(make_resolver: Callable) -> Callable:
    """Factory for SafeFetchers backed by an httpx mock transport and no-op sleeps."""

    def _make_fetcher(
        handler: Callable[[httpx.Request], httpx.Response],
        resolver_mapping: dict[str, list[str]] | None = None,
    ) -> SafeFetcher:
        return SafeFetcher(
            resolver=make_resolver(resolver_mapping),
            transport=httpx.MockTransport(handler),
            sleep=AsyncMock(),
        )

    return _make_fetcher


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    make_fetcher: Callable,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with auth and ingestion overrides.

    Every feed URL serves SAMPLE_RSS_XML. Callers authenticate with
    ``Authorization: Bearer <user id>``.
    """
    app = create_app()

    async def override_get_current_user_id(authorization: str | None = Header(None)) -> str:
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
            )
        return authorization.removeprefix("Bearer ")

    def override_get_ingestion_service() -> IngestionService:
        fetcher = make_fetcher(lambda request: httpx.Response(200, text=SAMPLE_RSS_XML))
        return IngestionService(session_factory, fetcher=fetcher)

    app.dependency_overrides[get_current_user_id] = override_get_current_user_id
    app.dependency_overrides[get_ingestion_service] = override_get_ingestion_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(test_user: User) -> dict[str, str]:
    """Authorization headers for test_user."""
    return {"Authorization": f"Bearer {test_user.id}"}
