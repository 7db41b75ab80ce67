"""Sources: health-tracked polling of subscribed feeds."""

from changewatch.sources.config import SourcesConfig
from changewatch.sources.engine import SourceIngestionEngine
from changewatch.sources.feed_client import FeedClient
from changewatch.sources.health import HealthAction, HealthDecision, SourceHealthTracker
from changewatch.sources.repository import SourcesRepository
from changewatch.sources.schemas import (
    Activity,
    CheckOutcome,
    Feed,
    FeedEntry,
    FeedItem,
    FeedLink,
    Source,
    SourceChanged,
    SourceDisabled,
    SourceFailed,
    SourceUnchanged,
)

__all__ = [
    "Activity",
    "CheckOutcome",
    "Feed",
    "FeedClient",
    "FeedEntry",
    "FeedItem",
    "FeedLink",
    "HealthAction",
    "HealthDecision",
    "Source",
    "SourceChanged",
    "SourceDisabled",
    "SourceFailed",
    "SourceHealthTracker",
    "SourceIngestionEngine",
    "SourceUnchanged",
    "SourcesConfig",
    "SourcesRepository",
]
