"""Tests for SourcesRepository."""

from datetime import timedelta
from unittest.mock import AsyncMock

import asyncpg
import pytest

from changewatch.errors import PersistenceError
from changewatch.sources.repository import SourcesRepository
from tests.test_sources.conftest import WATERMARK, make_item


class TestSources:
    """Source CRUD."""

    @pytest.mark.asyncio
    async def test_list_sources(self, mock_database: AsyncMock, source_row: dict) -> None:
        mock_database.fetch.return_value = [source_row]
        repo = SourcesRepository(mock_database)

        sources = await repo.list_sources()

        assert len(sources) == 1
        assert sources[0].id == 7
        assert sources[0].failed_count == 2
        assert sources[0].last_checked == WATERMARK

    @pytest.mark.asyncio
    async def test_get_source_not_found(self, mock_database: AsyncMock) -> None:
        repo = SourcesRepository(mock_database)
        assert await repo.get_source(99) is None

    @pytest.mark.asyncio
    async def test_add_source_defaults_watermark_to_now(
        self, mock_database: AsyncMock, source_row: dict
    ) -> None:
        mock_database.fetchrow.return_value = source_row
        repo = SourcesRepository(mock_database)

        source = await repo.add_source("https://blog.example.com/feed.xml")

        args = mock_database.fetchrow.call_args[0]
        assert "INSERT INTO sources" in args[0]
        assert args[1] == "https://blog.example.com/feed.xml"
        assert args[2].tzinfo is not None
        assert source.url == "https://blog.example.com/feed.xml"

    @pytest.mark.asyncio
    async def test_enable_source_clears_failures(self, mock_database: AsyncMock) -> None:
        mock_database.execute.return_value = "UPDATE 1"
        repo = SourcesRepository(mock_database)

        assert await repo.enable_source(7) is True
        sql = mock_database.execute.call_args[0][0]
        assert "enabled = TRUE" in sql
        assert "failed_count = 0" in sql

    @pytest.mark.asyncio
    async def test_delete_missing_source(self, mock_database: AsyncMock) -> None:
        mock_database.execute.return_value = "DELETE 0"
        repo = SourcesRepository(mock_database)

        assert await repo.delete_source(7) is False

    @pytest.mark.asyncio
    async def test_update_source_failure_leaves_watermark(self, mock_database: AsyncMock) -> None:
        repo = SourcesRepository(mock_database)

        await repo.update_source_failure(7, 10, False)

        sql, *params = mock_database.execute.call_args[0]
        assert "last_checked" not in sql
        assert params == [7, 10, False]

    @pytest.mark.asyncio
    async def test_update_source_success(self, mock_database: AsyncMock) -> None:
        repo = SourcesRepository(mock_database)

        await repo.update_source_success(7, WATERMARK)

        sql, *params = mock_database.execute.call_args[0]
        assert "failed_count = 0" in sql
        assert params == [7, WATERMARK]

    @pytest.mark.asyncio
    async def test_update_source_success_on_given_connection(
        self, mock_database: AsyncMock, mock_connection: AsyncMock
    ) -> None:
        repo = SourcesRepository(mock_database)

        await repo.update_source_success(7, WATERMARK, conn=mock_connection)

        mock_connection.execute.assert_awaited_once()
        mock_database.execute.assert_not_called()


class TestActivities:
    """Activity log writes and reads."""

    @pytest.mark.asyncio
    async def test_insert_activity_returns_id(self, mock_database: AsyncMock) -> None:
        mock_database.fetchval.return_value = 42
        repo = SourcesRepository(mock_database)

        activity_id = await repo.insert_activity(7, "https://blog.example.com/p", WATERMARK)

        assert activity_id == 42

    @pytest.mark.asyncio
    async def test_record_new_items_in_one_transaction(
        self, mock_database: AsyncMock, mock_connection: AsyncMock
    ) -> None:
        mock_connection.fetchval.side_effect = [11, 12]
        repo = SourcesRepository(mock_database)
        newest = WATERMARK + timedelta(hours=2)
        items = [make_item("b", newest), make_item("a", WATERMARK + timedelta(hours=1))]

        ids = await repo.record_new_items(7, newest, items)

        assert ids == [11, 12]
        update_sql, *update_params = mock_connection.execute.call_args[0]
        assert "UPDATE sources" in update_sql
        assert update_params == [7, newest]
        inserted_urls = [c.args[2] for c in mock_connection.fetchval.call_args_list]
        assert inserted_urls == ["https://blog.example.com/b", "https://blog.example.com/a"]
        mock_database.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_record_new_items_wraps_driver_errors(
        self, mock_database: AsyncMock, mock_connection: AsyncMock
    ) -> None:
        mock_connection.fetchval.side_effect = asyncpg.PostgresError("boom")
        repo = SourcesRepository(mock_database)

        with pytest.raises(PersistenceError, match="insert activity"):
            await repo.record_new_items(7, WATERMARK, [make_item("a", WATERMARK)])

    @pytest.mark.asyncio
    async def test_list_activities_includes_source_url(self, mock_database: AsyncMock) -> None:
        mock_database.fetch.return_value = [
            {
                "id": 3,
                "source_id": 7,
                "post_url": "https://blog.example.com/p",
                "timestamp": WATERMARK,
                "source_url": "https://blog.example.com/feed.xml",
            }
        ]
        repo = SourcesRepository(mock_database)

        activities = await repo.list_activities(limit=5)

        assert activities[0].source_url == "https://blog.example.com/feed.xml"
        assert mock_database.fetch.call_args[0][1:] == (5, 0)

    @pytest.mark.asyncio
    async def test_clear_activities_for_one_source(self, mock_database: AsyncMock) -> None:
        mock_database.execute.return_value = "DELETE 4"
        repo = SourcesRepository(mock_database)

        assert await repo.clear_activities(7) == 4
        assert mock_database.execute.call_args[0][1] == 7
