"""Database repository for the sources and activities tables."""

import logging
from datetime import datetime, timezone

import asyncpg

from changewatch.sources.schemas import Activity, FeedItem, Source
from changewatch.storage.database import Database, persistence_errors

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id           SERIAL PRIMARY KEY,
    url          TEXT NOT NULL UNIQUE,
    enabled      BOOLEAN NOT NULL DEFAULT TRUE,
    failed_count INTEGER NOT NULL DEFAULT 0,
    last_checked TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS activities (
    id         SERIAL PRIMARY KEY,
    source_id  INTEGER NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    post_url   TEXT NOT NULL,
    timestamp  TIMESTAMPTZ NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_activities_source_id
    ON activities(source_id);
"""

_INSERT_ACTIVITY_SQL = """
INSERT INTO activities (source_id, post_url, timestamp)
VALUES ($1, $2, $3)
RETURNING id
"""


def _record_to_source(record) -> Source:
    """Convert an asyncpg Record to a Source dataclass."""
    return Source(
        id=record["id"],
        url=record["url"],
        enabled=record["enabled"],
        failed_count=record["failed_count"],
        last_checked=record["last_checked"],
    )


def _record_to_activity(record) -> Activity:
    return Activity(
        id=record["id"],
        source_id=record["source_id"],
        post_url=record["post_url"],
        timestamp=record["timestamp"],
        source_url=record.get("source_url"),
    )


class SourcesRepository:
    """CRUD operations for sources and their activity log.

    Each method acquires its own pooled connection, so concurrent
    per-source checks can write independently.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the sources and activities tables (idempotent)."""
        with persistence_errors("create sources tables"):
            await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Sources tables ensured")

    # ── Sources ─────────────────────────────────────────────

    async def list_sources(self) -> list[Source]:
        """All sources, enabled or not, ordered by id."""
        with persistence_errors("list sources"):
            rows = await self._db.fetch("SELECT * FROM sources ORDER BY id")
        return [_record_to_source(r) for r in rows]

    async def get_source(self, source_id: int) -> Source | None:
        with persistence_errors("get source"):
            row = await self._db.fetchrow(
                "SELECT * FROM sources WHERE id = $1", source_id
            )
        return _record_to_source(row) if row else None

    async def add_source(
        self, url: str, last_checked: datetime | None = None
    ) -> Source:
        """Subscribe to a feed URL.

        The watermark starts at ``last_checked`` (default: now), so items
        published before the subscription are not reported.
        """
        watermark = last_checked or datetime.now(timezone.utc)
        with persistence_errors("add source"):
            row = await self._db.fetchrow(
                """
                INSERT INTO sources (url, last_checked)
                VALUES ($1, $2)
                RETURNING *
                """,
                url, watermark,
            )
        logger.info("Added source %s", url)
        return _record_to_source(row)

    async def enable_source(self, source_id: int) -> bool:
        """Manually re-enable a source and clear its failure count.

        Returns True if a row was updated.
        """
        with persistence_errors("enable source"):
            result = await self._db.execute(
                """
                UPDATE sources SET enabled = TRUE, failed_count = 0
                WHERE id = $1
                """,
                source_id,
            )
        return result.endswith(" 1")

    async def delete_source(self, source_id: int) -> bool:
        """Delete a source and (via cascade) its activities."""
        with persistence_errors("delete source"):
            result = await self._db.execute(
                "DELETE FROM sources WHERE id = $1", source_id
            )
        return result.endswith(" 1")

    async def update_source_failure(
        self, source_id: int, failed_count: int, enabled: bool
    ) -> None:
        """Persist a failure count and enabled flag; the watermark is untouched."""
        with persistence_errors("update source failure"):
            await self._db.execute(
                "UPDATE sources SET failed_count = $2, enabled = $3 WHERE id = $1",
                source_id, failed_count, enabled,
            )

    async def update_source_success(
        self,
        source_id: int,
        last_checked: datetime,
        conn: asyncpg.Connection | None = None,
    ) -> None:
        """Advance the watermark and clear the failure count.

        Pass ``conn`` to run inside a caller's transaction.
        """
        with persistence_errors("update source success"):
            await (conn or self._db).execute(
                "UPDATE sources SET last_checked = $2, failed_count = 0 WHERE id = $1",
                source_id, last_checked,
            )

    # ── Activities ──────────────────────────────────────────

    async def insert_activity(
        self,
        source_id: int,
        url: str,
        timestamp: datetime,
        conn: asyncpg.Connection | None = None,
    ) -> int:
        """Append one activity row; returns its id."""
        with persistence_errors("insert activity"):
            return await (conn or self._db).fetchval(
                _INSERT_ACTIVITY_SQL, source_id, url, timestamp
            )

    async def record_new_items(
        self,
        source_id: int,
        last_checked: datetime,
        items: list[FeedItem] | tuple[FeedItem, ...],
    ) -> list[int]:
        """Advance the watermark and append one activity per item, atomically.

        Items are inserted in the given order. If any insert fails nothing
        is written, and the next check rescans the same window.
        """
        ids: list[int] = []
        with persistence_errors("record new items"):
            async with self._db.transaction() as conn:
                await self.update_source_success(source_id, last_checked, conn=conn)
                for item in items:
                    ids.append(
                        await self.insert_activity(
                            source_id, item.url, item.published, conn=conn
                        )
                    )
        return ids

    async def list_activities(self, limit: int = 50, offset: int = 0) -> list[Activity]:
        """Most recent activities first, with the owning source's URL."""
        with persistence_errors("list activities"):
            rows = await self._db.fetch(
                """
                SELECT a.id, a.source_id, a.post_url, a.timestamp, s.url AS source_url
                FROM activities AS a
                INNER JOIN sources AS s ON a.source_id = s.id
                ORDER BY a.id DESC
                LIMIT $1 OFFSET $2
                """,
                limit, offset,
            )
        return [_record_to_activity(r) for r in rows]

    async def clear_activities(self, source_id: int | None = None) -> int:
        """Delete activities (all, or for one source). Returns rows deleted."""
        with persistence_errors("clear activities"):
            if source_id is None:
                result = await self._db.execute("DELETE FROM activities")
            else:
                result = await self._db.execute(
                    "DELETE FROM activities WHERE source_id = $1", source_id
                )
        return int(result.split()[-1])
