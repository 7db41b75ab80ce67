"""Data models for feed sources, parsed feeds, and per-source check outcomes."""

from dataclasses import dataclass, field
from datetime import datetime

NO_URL = "No Url"
NO_BODY = "No body"


@dataclass
class Source:
    """A subscribed feed URL under health-tracked polling.

    ``last_checked`` is the publication time of the newest item already
    recorded for this source; only entries strictly newer than it are new.
    """

    id: int
    url: str
    last_checked: datetime
    enabled: bool = True
    failed_count: int = 0


@dataclass
class Activity:
    """One persisted record of a newly observed feed item (append-only)."""

    id: int
    source_id: int
    post_url: str
    timestamp: datetime
    source_url: str | None = None


@dataclass(frozen=True)
class FeedLink:
    """A link attached to a feed entry."""

    href: str
    rel: str | None = None
    media_type: str | None = None


@dataclass
class FeedEntry:
    """One entry of a parsed feed, normalized away from RSS/Atom differences.

    ``published`` is None when the entry carries no parseable timestamp.
    """

    title: str
    links: list[FeedLink] = field(default_factory=list)
    published: datetime | None = None
    content: str | None = None
    content_src: str | None = None
    summary: str | None = None


@dataclass
class Feed:
    """A parsed feed document; entries are kept in document order."""

    title: str
    updated: datetime | None = None
    entries: list[FeedEntry] = field(default_factory=list)


@dataclass(frozen=True)
class FeedItem:
    """A new entry extracted from a feed, ready to persist and announce."""

    title: str
    url: str
    published: datetime
    body: str


# ── Check outcomes ──────────────────────────────────────────


@dataclass(frozen=True)
class SourceDisabled:
    """The source was not enabled; nothing was fetched or written."""


@dataclass(frozen=True)
class SourceFailed:
    """Fetching or parsing failed."""

    reason: str


@dataclass(frozen=True)
class SourceUnchanged:
    """The feed was fetched but holds nothing newer than ``last_checked``."""


@dataclass(frozen=True)
class SourceChanged:
    """The feed holds new items; ``items`` are in feed order, newest first."""

    most_recent_item_time: datetime
    items: tuple[FeedItem, ...]
    feed_title: str = ""


CheckOutcome = SourceDisabled | SourceFailed | SourceUnchanged | SourceChanged
