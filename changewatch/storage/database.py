"""
PostgreSQL access for both ingestion engines.

One asyncpg pool per process. The query helpers each borrow a pooled
connection for a single statement, so concurrent per-source checks never
wait on each other's connection. Multi-statement writes use
transaction(), which pins one connection until the block exits.
Sessions run in UTC so TIMESTAMPTZ values come back comparable with the
aware datetimes produced by the feed parser.
"""

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from types import TracebackType
from typing import Any, Literal

import asyncpg

from changewatch.config.settings import get_settings
from changewatch.errors import PersistenceError

logger = logging.getLogger(__name__)

IsolationLevel = Literal["read_committed", "repeatable_read", "serializable"]


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.execute("SET TIME ZONE 'UTC'")


@contextmanager
def persistence_errors(operation: str) -> Iterator[None]:
    """
    Re-raise driver and connection failures as PersistenceError.

    Usage:
        with persistence_errors("insert activity"):
            await conn.execute(...)
    """
    try:
        yield
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
        raise PersistenceError(f"{operation} failed: {e}") from e


class Database:
    """
    Pool owner and thin query layer used by the repositories.

    Usage:
        async with Database() as db:
            sources = await SourcesRepository(db).list_sources()
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        command_timeout: float | None = None,
    ):
        settings = get_settings()

        self._database_url = database_url or str(settings.database_url)
        self._min_size = min_size or settings.db_pool_min_size
        self._max_size = max_size or settings.db_pool_max_size
        self._command_timeout = command_timeout or settings.db_command_timeout_seconds
        self._pool: asyncpg.Pool | None = None

    async def connect(self) -> None:
        """Open the pool. Connection failures are logged and re-raised."""
        try:
            self._pool = await asyncpg.create_pool(
                self._database_url,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
                init=_init_connection,
            )
        except (asyncpg.PostgresError, OSError) as e:
            logger.error("Failed to connect to database: %s", e)
            raise
        logger.info("Database connected (pool: %d-%d)", self._min_size, self._max_size)

    async def close(self) -> None:
        if self._pool is None:
            return
        await self._pool.close()
        self._pool = None
        logger.info("Database connection closed")

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """Borrow a connection for several reads that belong together."""
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(
        self, isolation: IsolationLevel = "read_committed"
    ) -> AsyncIterator[asyncpg.Connection]:
        """
        Run a block on one connection inside one transaction.

        Commits when the block exits normally and rolls back when it
        raises, so callers never observe a partial write.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction(isolation=isolation):
                yield conn

    async def execute(self, query: str, *args: Any) -> str:
        """Run a statement; returns the command status (e.g. ``"UPDATE 1"``)."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def health_check(self) -> bool:
        """True if a pooled connection answers ``SELECT 1``."""
        try:
            return await self.fetchval("SELECT 1") == 1
        except (asyncpg.PostgresError, OSError, RuntimeError):
            return False
