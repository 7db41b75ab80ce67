"""Database repository for roadmap snapshots and their change log.

A snapshot is a roadmap_activities row plus the tab and card assignment
rows pointing at it. Tab and card rows are never updated: a modified
card gets a new row and the old one stays for the change log.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import asyncpg

from changewatch.roadmap.schemas import (
    ChangeRecord,
    ChangeType,
    Roadmap,
    RoadmapActivity,
    RoadmapCard,
    RoadmapTab,
)
from changewatch.storage.database import Database, persistence_errors

logger = logging.getLogger(__name__)

# pg_advisory_xact_lock key held by every roadmap write transaction
ROADMAP_LOCK_KEY = 0x726F61646D6170

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS roadmap_activities (
    id        SERIAL PRIMARY KEY,
    timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS roadmap_watched_tabs (
    id             SERIAL PRIMARY KEY,
    tab_roadmap_id TEXT NOT NULL UNIQUE,
    timestamp      TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS roadmap_tabs (
    id         SERIAL PRIMARY KEY,
    roadmap_id TEXT NOT NULL,
    name       TEXT NOT NULL,
    slug       TEXT NOT NULL,
    timestamp  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS roadmap_cards (
    id          SERIAL PRIMARY KEY,
    roadmap_id  TEXT NOT NULL,
    name        TEXT NOT NULL,
    description TEXT NOT NULL,
    image_url   TEXT,
    slug        TEXT NOT NULL,
    timestamp   TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS roadmap_tab_assignments (
    id          SERIAL PRIMARY KEY,
    activity_id INTEGER NOT NULL REFERENCES roadmap_activities(id),
    tab_id      INTEGER NOT NULL REFERENCES roadmap_tabs(id),
    timestamp   TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS roadmap_card_assignments (
    id               SERIAL PRIMARY KEY,
    activity_id      INTEGER NOT NULL REFERENCES roadmap_activities(id),
    tab_id           INTEGER NOT NULL REFERENCES roadmap_tabs(id),
    card_id          INTEGER NOT NULL REFERENCES roadmap_cards(id),
    section_position INTEGER NOT NULL,
    card_position    INTEGER NOT NULL,
    timestamp        TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS roadmap_changes (
    id               SERIAL PRIMARY KEY,
    type             TEXT NOT NULL,
    activity_id      INTEGER NOT NULL REFERENCES roadmap_activities(id),
    previous_card_id INTEGER REFERENCES roadmap_cards(id),
    current_card_id  INTEGER REFERENCES roadmap_cards(id),
    tab_id           INTEGER REFERENCES roadmap_tabs(id),
    timestamp        TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_roadmap_tab_assignments_activity
    ON roadmap_tab_assignments(activity_id);
CREATE INDEX IF NOT EXISTS idx_roadmap_card_assignments_activity
    ON roadmap_card_assignments(activity_id);
CREATE INDEX IF NOT EXISTS idx_roadmap_changes_activity
    ON roadmap_changes(activity_id);
"""

_TABS_FOR_ACTIVITY_SQL = """
SELECT rt.id, rt.roadmap_id, rt.name, rt.slug
FROM roadmap_tab_assignments AS ta
INNER JOIN roadmap_tabs AS rt ON ta.tab_id = rt.id
WHERE ta.activity_id = $1
ORDER BY ta.id
"""

_CARDS_FOR_ACTIVITY_SQL = """
SELECT
    ca.tab_id,
    ca.section_position,
    ca.card_position,
    rc.id,
    rc.roadmap_id,
    rc.name,
    rc.description,
    rc.image_url,
    rc.slug
FROM roadmap_card_assignments AS ca
INNER JOIN roadmap_cards AS rc ON ca.card_id = rc.id
WHERE ca.activity_id = $1
ORDER BY ca.id
"""

_CHANGES_FOR_ACTIVITY_SQL = """
SELECT
    rch.id, rch.type, rch.activity_id,

    rc1.id AS previous_card_db_id, rc1.roadmap_id AS previous_card_id,
    rc1.name AS previous_card_name, rc1.description AS previous_card_description,
    rc1.image_url AS previous_card_image_url, rc1.slug AS previous_card_slug,

    rc2.id AS current_card_db_id, rc2.roadmap_id AS current_card_id,
    rc2.name AS current_card_name, rc2.description AS current_card_description,
    rc2.image_url AS current_card_image_url, rc2.slug AS current_card_slug,

    rt.id AS tab_db_id, rt.roadmap_id AS tab_id,
    rt.name AS tab_name, rt.slug AS tab_slug
FROM roadmap_changes AS rch
LEFT JOIN roadmap_cards AS rc1 ON rch.previous_card_id = rc1.id
LEFT JOIN roadmap_cards AS rc2 ON rch.current_card_id = rc2.id
LEFT JOIN roadmap_tabs AS rt ON rch.tab_id = rt.id
WHERE rch.activity_id = $1
ORDER BY rch.id
"""


def _record_to_tab(record) -> RoadmapTab:
    return RoadmapTab(
        external_id=record["roadmap_id"],
        name=record["name"],
        slug=record["slug"],
        internal_id=record["id"],
    )


def _record_to_card(record) -> RoadmapCard:
    return RoadmapCard(
        external_id=record["roadmap_id"],
        name=record["name"],
        description=record["description"],
        image_url=record["image_url"],
        slug=record["slug"],
        internal_id=record["id"],
        section_position=record["section_position"],
        card_position=record["card_position"],
    )


def _prefixed_card(record, prefix: str) -> RoadmapCard | None:
    if record[f"{prefix}_card_db_id"] is None:
        return None
    return RoadmapCard(
        external_id=record[f"{prefix}_card_id"],
        name=record[f"{prefix}_card_name"],
        description=record[f"{prefix}_card_description"],
        image_url=record[f"{prefix}_card_image_url"],
        slug=record[f"{prefix}_card_slug"],
        internal_id=record[f"{prefix}_card_db_id"],
    )


def _record_to_change(record) -> ChangeRecord:
    tab = None
    if record["tab_db_id"] is not None:
        tab = RoadmapTab(
            external_id=record["tab_id"],
            name=record["tab_name"],
            slug=record["tab_slug"],
            internal_id=record["tab_db_id"],
        )
    return ChangeRecord(
        id=record["id"],
        change_type=record["type"],
        activity_id=record["activity_id"],
        previous_card=_prefixed_card(record, "previous"),
        current_card=_prefixed_card(record, "current"),
        tab=tab,
    )


class RoadmapWriter:
    """Insert operations bound to one connection inside one transaction."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    async def insert_roadmap_activity(self) -> int:
        return await self._conn.fetchval(
            "INSERT INTO roadmap_activities (timestamp) VALUES ($1) RETURNING id",
            self._now(),
        )

    async def insert_tab(self, tab: RoadmapTab) -> int:
        return await self._conn.fetchval(
            """
            INSERT INTO roadmap_tabs (roadmap_id, name, slug, timestamp)
            VALUES ($1, $2, $3, $4)
            RETURNING id
            """,
            tab.external_id, tab.name, tab.slug, self._now(),
        )

    async def insert_card(self, card: RoadmapCard) -> int:
        return await self._conn.fetchval(
            """
            INSERT INTO roadmap_cards
                (roadmap_id, name, description, image_url, slug, timestamp)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING id
            """,
            card.external_id, card.name, card.description,
            card.image_url, card.slug, self._now(),
        )

    async def insert_tab_assignment(self, activity_id: int, tab_id: int) -> None:
        await self._conn.execute(
            """
            INSERT INTO roadmap_tab_assignments (activity_id, tab_id, timestamp)
            VALUES ($1, $2, $3)
            """,
            activity_id, tab_id, self._now(),
        )

    async def insert_card_assignment(
        self,
        activity_id: int,
        tab_id: int,
        card_id: int,
        section_position: int,
        card_position: int,
    ) -> None:
        await self._conn.execute(
            """
            INSERT INTO roadmap_card_assignments
                (activity_id, tab_id, card_id, section_position, card_position, timestamp)
            VALUES ($1, $2, $3, $4, $5, $6)
            """,
            activity_id, tab_id, card_id, section_position, card_position, self._now(),
        )

    async def insert_change(
        self,
        change_type: ChangeType,
        activity_id: int,
        previous_card_id: int | None = None,
        current_card_id: int | None = None,
        tab_id: int | None = None,
    ) -> None:
        await self._conn.execute(
            """
            INSERT INTO roadmap_changes
                (type, activity_id, previous_card_id, current_card_id, tab_id, timestamp)
            VALUES ($1, $2, $3, $4, $5, $6)
            """,
            change_type, activity_id, previous_card_id, current_card_id,
            tab_id, self._now(),
        )


class RoadmapRepository:
    """Snapshot storage, watched-tab list, and change-log queries."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create all roadmap tables and indexes (idempotent)."""
        with persistence_errors("create roadmap tables"):
            await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Roadmap tables ensured")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[RoadmapWriter]:
        """
        Open one transaction and yield a writer bound to it.

        Commits when the block exits normally. Any exception rolls the
        whole transaction back; driver errors surface as PersistenceError.
        Concurrent roadmap writers queue on a transaction-scoped advisory
        lock, so two snapshots never interleave.

        Usage:
            async with repo.transaction() as writer:
                activity_id = await writer.insert_roadmap_activity()
        """
        with persistence_errors("roadmap transaction"):
            async with self._db.transaction() as conn:
                await conn.execute("SELECT pg_advisory_xact_lock($1)", ROADMAP_LOCK_KEY)
                yield RoadmapWriter(conn)

    # ── Watched tabs ───────────────────────────────────────

    async def list_watched_tabs(self) -> list[str]:
        """External ids of the tabs whose cards are tracked."""
        with persistence_errors("list watched tabs"):
            rows = await self._db.fetch(
                "SELECT tab_roadmap_id FROM roadmap_watched_tabs ORDER BY id"
            )
        return [r["tab_roadmap_id"] for r in rows]

    async def watch_tab(self, tab_external_id: str) -> bool:
        """Add a tab to the watch list. Returns False if already watched."""
        with persistence_errors("watch tab"):
            result = await self._db.execute(
                """
                INSERT INTO roadmap_watched_tabs (tab_roadmap_id)
                VALUES ($1)
                ON CONFLICT (tab_roadmap_id) DO NOTHING
                """,
                tab_external_id,
            )
        return result.endswith(" 1")

    async def unwatch_tab(self, tab_external_id: str) -> bool:
        with persistence_errors("unwatch tab"):
            result = await self._db.execute(
                "DELETE FROM roadmap_watched_tabs WHERE tab_roadmap_id = $1",
                tab_external_id,
            )
        return result.endswith(" 1")

    # ── Snapshots ──────────────────────────────────────────

    async def load_most_recent_snapshot(self) -> Roadmap | None:
        """
        Rebuild the newest persisted snapshot with database ids attached.

        Returns None before the first snapshot has been stored.
        """
        with persistence_errors("load most recent snapshot"):
            async with self._db.acquire() as conn:
                activity_id = await conn.fetchval(
                    "SELECT id FROM roadmap_activities ORDER BY id DESC LIMIT 1"
                )
                if activity_id is None:
                    return None

                tab_rows = await conn.fetch(_TABS_FOR_ACTIVITY_SQL, activity_id)
                card_rows = await conn.fetch(_CARDS_FOR_ACTIVITY_SQL, activity_id)

        tabs = [_record_to_tab(r) for r in tab_rows]
        external_by_db_id = {tab.internal_id: tab.external_id for tab in tabs}

        cards: dict[str, list[RoadmapCard]] = {}
        for row in card_rows:
            tab_external_id = external_by_db_id.get(row["tab_id"])
            if tab_external_id is None:
                logger.warning(
                    "Card assignment in activity %d references tab row %d "
                    "missing from its tab list",
                    activity_id, row["tab_id"],
                )
                continue
            cards.setdefault(tab_external_id, []).append(_record_to_card(row))

        logger.debug(
            "Loaded roadmap activity %d: %d tabs, %d cards",
            activity_id, len(tabs), len(card_rows),
        )
        return Roadmap.create(tabs, cards)

    # ── History ────────────────────────────────────────────

    async def list_activities(
        self, limit: int = 20, offset: int = 0
    ) -> list[RoadmapActivity]:
        """Most recent snapshots first."""
        with persistence_errors("list roadmap activities"):
            rows = await self._db.fetch(
                """
                SELECT id, timestamp FROM roadmap_activities
                ORDER BY id DESC
                LIMIT $1 OFFSET $2
                """,
                limit, offset,
            )
        return [RoadmapActivity(id=r["id"], timestamp=r["timestamp"]) for r in rows]

    async def get_changes(self, activity_id: int) -> list[ChangeRecord]:
        """The change log of one snapshot, resolved to tab and card rows."""
        with persistence_errors("get roadmap changes"):
            rows = await self._db.fetch(_CHANGES_FOR_ACTIVITY_SQL, activity_id)
        return [_record_to_change(r) for r in rows]
