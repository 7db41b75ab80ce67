"""Shared fixtures for roadmap tests.

FakeRoadmapStore mirrors RoadmapRepository with in-memory tables. Writes
inside transaction() are staged on a copy and only become visible when
the block exits cleanly, so rollback behavior can be asserted on the
table contents.
"""

import copy
import json
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest

from changewatch.errors import PersistenceError
from changewatch.notifications.notifier import Notifier
from changewatch.roadmap.client import SnapshotClient
from changewatch.roadmap.schemas import Roadmap, RoadmapCard, RoadmapTab

TABLES = (
    "roadmap_activities",
    "roadmap_tabs",
    "roadmap_cards",
    "roadmap_tab_assignments",
    "roadmap_card_assignments",
    "roadmap_changes",
)


def tab(external_id: str, name: str | None = None) -> RoadmapTab:
    return RoadmapTab(external_id=external_id, name=name or external_id.upper(), slug=external_id)


def card(
    external_id: str,
    name: str | None = None,
    description: str = "",
    image_url: str | None = None,
    section_position: int = 0,
    card_position: int = 0,
) -> RoadmapCard:
    return RoadmapCard(
        external_id=external_id,
        name=name or external_id,
        description=description,
        slug=external_id,
        image_url=image_url,
        section_position=section_position,
        card_position=card_position,
    )


def roadmap(tabs: list[RoadmapTab], cards: dict[str, list[RoadmapCard]] | None = None) -> Roadmap:
    return Roadmap.create(tabs, cards or {})


def portal_page(data: dict) -> str:
    return (
        "<html><head><title>Roadmap</title></head><body>"
        '<div id="app"></div>'
        f"<script>window.pbData = {json.dumps(data)};</script>"
        "<script>console.log('{not data}')</script>"
        "</body></html>"
    )


class FakeRoadmapWriter:
    def __init__(self, store: "FakeRoadmapStore", tables: dict[str, list[dict]]) -> None:
        self._store = store
        self._tables = tables
        self._card_inserts = 0

    def _append(self, table: str, row: dict) -> int:
        row_id = len(self._tables[table]) + 1
        self._tables[table].append({"id": row_id, **row})
        return row_id

    async def insert_roadmap_activity(self) -> int:
        return self._append("roadmap_activities", {})

    async def insert_tab(self, tab: RoadmapTab) -> int:
        return self._append(
            "roadmap_tabs",
            {"roadmap_id": tab.external_id, "name": tab.name, "slug": tab.slug},
        )

    async def insert_card(self, card: RoadmapCard) -> int:
        self._card_inserts += 1
        if self._card_inserts == self._store.fail_on_card_insert:
            raise PersistenceError("insert card failed: connection lost")
        return self._append(
            "roadmap_cards",
            {
                "roadmap_id": card.external_id,
                "name": card.name,
                "description": card.description,
                "image_url": card.image_url,
                "slug": card.slug,
            },
        )

    async def insert_tab_assignment(self, activity_id: int, tab_id: int) -> None:
        self._append("roadmap_tab_assignments", {"activity_id": activity_id, "tab_id": tab_id})

    async def insert_card_assignment(
        self, activity_id, tab_id, card_id, section_position, card_position
    ) -> None:
        self._append(
            "roadmap_card_assignments",
            {
                "activity_id": activity_id,
                "tab_id": tab_id,
                "card_id": card_id,
                "section_position": section_position,
                "card_position": card_position,
            },
        )

    async def insert_change(
        self, change_type, activity_id, previous_card_id=None, current_card_id=None, tab_id=None
    ) -> None:
        self._append(
            "roadmap_changes",
            {
                "type": change_type,
                "activity_id": activity_id,
                "previous_card_id": previous_card_id,
                "current_card_id": current_card_id,
                "tab_id": tab_id,
            },
        )


class FakeRoadmapStore:
    """In-memory stand-in for RoadmapRepository."""

    def __init__(self, watched: list[str] | None = None) -> None:
        self.watched = list(watched or [])
        self.tables: dict[str, list[dict]] = {name: [] for name in TABLES}
        self.fail_on_card_insert: int | None = None
        self.commits = 0

    def rows(self, table: str, **where) -> list[dict]:
        return [
            row for row in self.tables[table]
            if all(row[key] == value for key, value in where.items())
        ]

    def row_counts(self) -> dict[str, int]:
        return {name: len(rows) for name, rows in self.tables.items()}

    async def list_watched_tabs(self) -> list[str]:
        return list(self.watched)

    @asynccontextmanager
    async def transaction(self):
        staged = copy.deepcopy(self.tables)
        yield FakeRoadmapWriter(self, staged)
        self.tables = staged
        self.commits += 1

    async def load_most_recent_snapshot(self) -> Roadmap | None:
        if not self.tables["roadmap_activities"]:
            return None
        activity_id = self.tables["roadmap_activities"][-1]["id"]

        tabs_by_row = {r["id"]: r for r in self.tables["roadmap_tabs"]}
        cards_by_row = {r["id"]: r for r in self.tables["roadmap_cards"]}

        tabs = []
        for assignment in self.rows("roadmap_tab_assignments", activity_id=activity_id):
            row = tabs_by_row[assignment["tab_id"]]
            tabs.append(
                RoadmapTab(
                    external_id=row["roadmap_id"],
                    name=row["name"],
                    slug=row["slug"],
                    internal_id=row["id"],
                )
            )

        cards: dict[str, list[RoadmapCard]] = {}
        for assignment in self.rows("roadmap_card_assignments", activity_id=activity_id):
            tab_external_id = tabs_by_row[assignment["tab_id"]]["roadmap_id"]
            row = cards_by_row[assignment["card_id"]]
            cards.setdefault(tab_external_id, []).append(
                RoadmapCard(
                    external_id=row["roadmap_id"],
                    name=row["name"],
                    description=row["description"],
                    slug=row["slug"],
                    image_url=row["image_url"],
                    internal_id=row["id"],
                    section_position=assignment["section_position"],
                    card_position=assignment["card_position"],
                )
            )

        return Roadmap.create(tabs, cards)


@pytest.fixture
def store() -> FakeRoadmapStore:
    return FakeRoadmapStore(watched=["t1"])


@pytest.fixture
def snapshot_client() -> AsyncMock:
    return AsyncMock(spec=SnapshotClient)


@pytest.fixture
def notifier() -> AsyncMock:
    notifier = AsyncMock(spec=Notifier)
    notifier.notify.return_value = True
    return notifier


@pytest.fixture
def mock_connection() -> AsyncMock:
    conn = AsyncMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchval = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value="INSERT 0 1")
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
    async def acquire():
        yield mock_connection

    @asynccontextmanager
    async def transaction():
        yield mock_connection

    db.acquire = acquire
    db.transaction = transaction
    return db
