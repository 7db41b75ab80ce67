"""Shared fixtures for sources tests."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from changewatch.sources.schemas import Feed, FeedEntry, FeedItem, FeedLink, Source

WATERMARK = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

RSS_DOCUMENT = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Engineering</title>
    <link>https://blog.example.com/</link>
    <lastBuildDate>Sat, 02 Mar 2024 09:00:00 GMT</lastBuildDate>
    <item>
      <title>Shipping faster builds</title>
      <link>https://blog.example.com/faster-builds</link>
      <pubDate>Sat, 02 Mar 2024 09:00:00 GMT</pubDate>
      <description>&lt;p&gt;We cut build times &lt;b&gt;in half&lt;/b&gt;.&lt;/p&gt;</description>
    </item>
    <item>
      <title>Hello world</title>
      <link>https://blog.example.com/hello</link>
      <pubDate>Thu, 29 Feb 2024 08:00:00 GMT</pubDate>
      <description>First post</description>
    </item>
  </channel>
</rss>
"""

ATOM_DOCUMENT = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Release notes</title>
  <updated>2024-03-02T10:00:00Z</updated>
  <id>urn:example:releases</id>
  <entry>
    <title>v2.0</title>
    <id>urn:example:releases:2</id>
    <updated>2024-03-02T10:00:00Z</updated>
    <link rel="alternate" type="text/html" href="https://example.com/releases/2"/>
    <link rel="enclosure" type="application/zip" href="https://example.com/v2.zip"/>
    <content type="html">&lt;p&gt;Major release&lt;/p&gt;</content>
    <summary>Short summary</summary>
  </entry>
</feed>
"""


def make_source(**overrides) -> Source:
    fields = {
        "id": 1,
        "url": "https://blog.example.com/feed.xml",
        "last_checked": WATERMARK,
        "enabled": True,
        "failed_count": 0,
    }
    fields.update(overrides)
    return Source(**fields)


def make_entry(title: str, published: datetime | None, **overrides) -> FeedEntry:
    fields = {
        "title": title,
        "links": [FeedLink(href=f"https://blog.example.com/{title}", rel="alternate",
                           media_type="text/html")],
        "published": published,
        "summary": f"{title} summary",
    }
    fields.update(overrides)
    return FeedEntry(**fields)


def make_item(title: str, published: datetime) -> FeedItem:
    return FeedItem(
        title=title,
        url=f"https://blog.example.com/{title}",
        published=published,
        body=f"{title} body",
    )


@pytest.fixture
def source() -> Source:
    return make_source()


@pytest.fixture
def empty_feed() -> Feed:
    return Feed(title="Example Engineering", updated=WATERMARK, entries=[])


@pytest.fixture
def mock_connection() -> AsyncMock:
    """Connection handed out inside Database.transaction()."""
    conn = AsyncMock()
    conn.execute = AsyncMock(return_value="UPDATE 1")
    conn.fetchval = AsyncMock(return_value=1)
    return conn


@pytest.fixture
def mock_database(mock_connection: AsyncMock) -> AsyncMock:
    """Mock Database instance matching the Database API."""
    db = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.fetchval = AsyncMock(return_value=None)
    db.fetchrow = AsyncMock(return_value=None)
    db.execute = AsyncMock(return_value="INSERT 0 1")

    @asynccontextmanager
    async def transaction():
        yield mock_connection

    db.transaction = transaction
    return db


@pytest.fixture
def source_row() -> dict:
    """A dict mimicking an asyncpg Record for a source."""
    return {
        "id": 7,
        "url": "https://blog.example.com/feed.xml",
        "enabled": True,
        "failed_count": 2,
        "last_checked": WATERMARK,
        "created_at": WATERMARK,
    }
