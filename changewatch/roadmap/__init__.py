"""Roadmap: snapshot, diff, and change-log persistence of the product roadmap."""

from changewatch.roadmap.client import SnapshotClient, build_snapshot, parse_portal_data
from changewatch.roadmap.config import RoadmapConfig
from changewatch.roadmap.diff import diff, notify_count, should_notify, should_save
from changewatch.roadmap.engine import RoadmapIngestionEngine
from changewatch.roadmap.repository import RoadmapRepository, RoadmapWriter
from changewatch.roadmap.schemas import (
    CardAdded,
    CardModified,
    CardRemoved,
    CardUnchanged,
    Change,
    ChangeRecord,
    Roadmap,
    RoadmapActivity,
    RoadmapCard,
    RoadmapTab,
    TabAdded,
    TabCardsNotInCurrent,
    TabCardsNotInPrevious,
    TabRemoved,
    TabUnchanged,
)

__all__ = [
    "CardAdded",
    "CardModified",
    "CardRemoved",
    "CardUnchanged",
    "Change",
    "ChangeRecord",
    "Roadmap",
    "RoadmapActivity",
    "RoadmapCard",
    "RoadmapConfig",
    "RoadmapIngestionEngine",
    "RoadmapRepository",
    "RoadmapTab",
    "RoadmapWriter",
    "SnapshotClient",
    "TabAdded",
    "TabCardsNotInCurrent",
    "TabCardsNotInPrevious",
    "TabRemoved",
    "TabUnchanged",
    "build_snapshot",
    "diff",
    "notify_count",
    "parse_portal_data",
    "should_notify",
    "should_save",
]
