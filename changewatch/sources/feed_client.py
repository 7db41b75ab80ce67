"""
Feed client: fetch one RSS/Atom document and normalize it.

Handles:
- Fetching through the retrying HTTP client (timeouts are always applied)
- RSS/Atom parsing with feedparser
- Normalizing timestamps to timezone-aware UTC datetimes
"""

import calendar
import logging
import time
from datetime import datetime, timezone
from typing import Any

import feedparser

from changewatch.errors import ParseError
from changewatch.ingestion.http_client import HTTPClient, RetryConfig
from changewatch.sources.config import SourcesConfig
from changewatch.sources.schemas import Feed, FeedEntry, FeedLink

logger = logging.getLogger(__name__)


def _to_datetime(parsed: time.struct_time | None) -> datetime | None:
    """Convert a feedparser UTC struct_time into an aware datetime."""
    if not parsed:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
    except (OverflowError, ValueError, TypeError):
        return None


def _entry_time(entry: dict[str, Any]) -> datetime | None:
    # Atom entries frequently carry only <updated>
    for key in ("published_parsed", "updated_parsed"):
        value = _to_datetime(entry.get(key))
        if value is not None:
            return value
    return None


def _entry_links(entry: dict[str, Any]) -> list[FeedLink]:
    links = []
    for link in entry.get("links", []):
        href = link.get("href")
        if not href:
            continue
        links.append(
            FeedLink(href=href, rel=link.get("rel"), media_type=link.get("type"))
        )
    return links


def _entry_content(entry: dict[str, Any]) -> tuple[str | None, str | None]:
    """Return (content body, content src url) of the first content element."""
    contents = entry.get("content") or []
    if not contents:
        return None, None
    first = contents[0]
    return first.get("value") or None, first.get("src") or None


def parse_feed(document: bytes | str) -> Feed:
    """
    Parse a raw feed document into a Feed.

    Raises:
        ParseError: If the document is not a recognizable RSS/Atom feed.
    """
    parsed = feedparser.parse(document)

    if not parsed.get("version"):
        reason = parsed.get("bozo_exception") or "unrecognized feed format"
        raise ParseError(f"Not a feed document: {reason}")

    meta = parsed.get("feed", {})
    entries = []
    for raw in parsed.get("entries", []):
        content, content_src = _entry_content(raw)
        entries.append(
            FeedEntry(
                title=raw.get("title", ""),
                links=_entry_links(raw),
                published=_entry_time(raw),
                content=content,
                content_src=content_src,
                summary=raw.get("summary") or None,
            )
        )

    updated = _to_datetime(meta.get("updated_parsed")) or _to_datetime(
        meta.get("published_parsed")
    )

    return Feed(title=meta.get("title", ""), updated=updated, entries=entries)


class FeedClient:
    """
    Fetches and parses one feed document per call.

    Each call opens its own short-lived HTTP client, so concurrent checks
    of different sources share nothing.
    """

    def __init__(
        self,
        config: SourcesConfig | None = None,
        retry_config: RetryConfig | None = None,
    ):
        self._config = config or SourcesConfig()
        self._retry_config = retry_config or RetryConfig.from_settings()

    async def fetch(self, url: str) -> Feed:
        """
        Fetch and parse the feed at ``url``.

        Raises:
            NetworkError: Unreachable, timed out, or non-success status.
            ParseError: The response is not a parseable feed.
        """
        async with HTTPClient(
            self._retry_config,
            timeout=self._config.fetch_timeout_seconds,
            user_agent=self._config.user_agent,
        ) as client:
            response = await client.get(url)

        feed = parse_feed(response.content)
        logger.debug("Parsed %d entries from %s", len(feed.entries), url)
        return feed
