"""
Command-line interface for changewatch.

Provides the manual check triggers, database initialization, and
source / watched-tab administration.

Usage:
    changewatch init-db          # Create all tables
    changewatch check-sources    # Poll every subscribed feed once
    changewatch check-roadmap    # Snapshot and diff the roadmap once
    changewatch sources list     # Show subscribed feeds and their health
    changewatch tabs watch ID    # Track the cards of a roadmap tab
"""

import asyncio
import sys
import uuid
from collections.abc import Awaitable, Callable
from typing import TypeVar

import asyncpg
import click

from changewatch.errors import ChangewatchError
from changewatch.observability.logging import bind_context, clear_context, setup_logging
from changewatch.storage.database import Database

T = TypeVar("T")


def _run_with_database(
    func: Callable[[Database], Awaitable[T]], command: str | None = None
) -> T:
    """Connect, run ``func`` against the pool, and always close it.

    When ``command`` is given every log line of the run carries it and a
    short run id.
    """

    async def run() -> T:
        if command:
            bind_context(command=command, run_id=uuid.uuid4().hex[:8])
        db = Database()
        try:
            await db.connect()
            return await func(db)
        finally:
            await db.close()
            clear_context()

    try:
        return asyncio.run(run())
    except (OSError, asyncpg.PostgresError) as e:
        click.echo(click.style(f"Cannot connect to database: {e}", fg="red"), err=True)
        sys.exit(1)
    except ChangewatchError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Changewatch - feed and roadmap change tracking."""
    setup_logging("DEBUG" if debug else None)


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from changewatch.roadmap.repository import RoadmapRepository
    from changewatch.sources.repository import SourcesRepository

    async def run(db: Database) -> None:
        await SourcesRepository(db).create_tables()
        await RoadmapRepository(db).create_tables()
        click.echo("Database initialized successfully")

    _run_with_database(run)


@main.command("check-sources")
def check_sources() -> None:
    """Check every subscribed feed once and record new items."""
    from changewatch.notifications.notifier import Notifier
    from changewatch.sources.engine import SourceIngestionEngine
    from changewatch.sources.feed_client import FeedClient
    from changewatch.sources.repository import SourcesRepository
    from changewatch.sources.schemas import SourceChanged, SourceFailed

    async def run(db: Database) -> None:
        engine = SourceIngestionEngine(SourcesRepository(db), FeedClient(), Notifier())
        outcomes = await engine.run()

        changed = [o for o in outcomes.values() if isinstance(o, SourceChanged)]
        failed = sum(isinstance(o, SourceFailed) for o in outcomes.values())
        click.echo(
            f"\nChecked {len(outcomes)} sources: {len(changed)} changed "
            f"({sum(len(o.items) for o in changed)} new items), {failed} failed"
        )

    _run_with_database(run, command="check-sources")


@main.command("check-roadmap")
def check_roadmap() -> None:
    """Snapshot the roadmap once and record what changed."""
    from changewatch.notifications.notifier import Notifier
    from changewatch.roadmap.client import SnapshotClient
    from changewatch.roadmap.engine import RoadmapIngestionEngine
    from changewatch.roadmap.repository import RoadmapRepository

    async def run(db: Database) -> int | None:
        engine = RoadmapIngestionEngine(RoadmapRepository(db), SnapshotClient(), Notifier())
        return await engine.run()

    activity_id = _run_with_database(run, command="check-roadmap")
    if activity_id is None:
        click.echo("\nNo roadmap snapshot saved")
    else:
        click.echo(f"\nSaved roadmap activity {activity_id}")


@main.command()
def health() -> None:
    """Check the database and report configuration."""
    from changewatch.notifications.config import NotificationConfig
    from changewatch.roadmap.config import RoadmapConfig

    async def check() -> dict[str, bool]:
        db = Database()
        try:
            await db.connect()
        except (OSError, asyncpg.PostgresError) as e:
            click.echo(click.style(f"Cannot connect to database: {e}", fg="red"), err=True)
            return {"postgres": False}
        try:
            return {"postgres": await db.health_check()}
        finally:
            await db.close()

    results = asyncio.run(check())
    notifications = NotificationConfig()
    results["notifications_enabled"] = notifications.enabled
    results["mail_configured"] = notifications.mail_configured
    results["roadmap_configured"] = RoadmapConfig().url is not None

    click.echo("\nHealth Check Results:")
    click.echo("-" * 40)
    for name, status in results.items():
        icon = "✓" if status else "✗"
        color = "green" if status else "red"
        click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
    click.echo("-" * 40)

    sys.exit(0 if results["postgres"] else 1)


# ── Sources ────────────────────────────────────────────────


@main.group()
def sources() -> None:
    """Manage subscribed feeds."""


@sources.command("list")
def sources_list() -> None:
    """Show every source with its health."""
    from changewatch.sources.repository import SourcesRepository

    async def run(db: Database) -> None:
        rows = await SourcesRepository(db).list_sources()
        if not rows:
            click.echo("No sources")
            return

        click.echo(f"\n{'ID':>4}  {'Enabled':<8} {'Failed':>6}  {'Last checked':<26} URL")
        click.echo("-" * 80)
        for source in rows:
            color = "green" if source.enabled else "red"
            click.echo(
                f"{source.id:>4}  "
                + click.style(f"{str(source.enabled):<8}", fg=color)
                + f" {source.failed_count:>6}  {source.last_checked.isoformat():<26} {source.url}"
            )

    _run_with_database(run)


@sources.command("add")
@click.argument("url")
def sources_add(url: str) -> None:
    """Subscribe to the feed at URL."""
    from changewatch.sources.repository import SourcesRepository

    async def run(db: Database) -> None:
        source = await SourcesRepository(db).add_source(url)
        click.echo(f"Added source {source.id}: {source.url}")

    _run_with_database(run)


@sources.command("enable")
@click.argument("source_id", type=int)
def sources_enable(source_id: int) -> None:
    """Re-enable a disabled source and clear its failure count."""
    from changewatch.sources.repository import SourcesRepository

    async def run(db: Database) -> bool:
        return await SourcesRepository(db).enable_source(source_id)

    if _run_with_database(run):
        click.echo(f"Source {source_id} enabled")
    else:
        click.echo(click.style(f"Source {source_id} not found", fg="red"), err=True)
        sys.exit(1)


@sources.command("delete")
@click.argument("source_id", type=int)
@click.confirmation_option(prompt="Delete this source and all of its activities?")
def sources_delete(source_id: int) -> None:
    """Delete a source and its activities."""
    from changewatch.sources.repository import SourcesRepository

    async def run(db: Database) -> bool:
        return await SourcesRepository(db).delete_source(source_id)

    if _run_with_database(run):
        click.echo(f"Source {source_id} deleted")
    else:
        click.echo(click.style(f"Source {source_id} not found", fg="red"), err=True)
        sys.exit(1)


@main.command()
@click.option("--limit", default=20, help="Maximum activities to show")
@click.option("--offset", default=0, help="Activities to skip")
@click.option("--clear", is_flag=True, help="Delete activities instead of listing them")
@click.option("--source-id", type=int, default=None, help="With --clear, only this source")
def activities(limit: int, offset: int, clear: bool, source_id: int | None) -> None:
    """List recent feed activity, newest first."""
    from changewatch.sources.repository import SourcesRepository

    async def run(db: Database) -> None:
        repo = SourcesRepository(db)
        if clear:
            deleted = await repo.clear_activities(source_id)
            click.echo(f"Deleted {deleted} activities")
            return

        rows = await repo.list_activities(limit=limit, offset=offset)
        if not rows:
            click.echo("No activities")
            return
        for activity in rows:
            click.echo(
                f"{activity.timestamp.isoformat()}  {activity.post_url}"
                f"  ({activity.source_url or activity.source_id})"
            )

    _run_with_database(run)


# ── Roadmap ────────────────────────────────────────────────


@main.group()
def tabs() -> None:
    """Manage which roadmap tabs have their cards tracked."""


@tabs.command("list")
def tabs_list() -> None:
    """Show watched tab ids."""
    from changewatch.roadmap.repository import RoadmapRepository

    async def run(db: Database) -> None:
        watched = await RoadmapRepository(db).list_watched_tabs()
        if not watched:
            click.echo("No watched tabs")
        for tab_id in watched:
            click.echo(tab_id)

    _run_with_database(run)


@tabs.command("watch")
@click.argument("tab_id")
def tabs_watch(tab_id: str) -> None:
    """Start tracking the cards of TAB_ID."""
    from changewatch.roadmap.repository import RoadmapRepository

    async def run(db: Database) -> bool:
        return await RoadmapRepository(db).watch_tab(tab_id)

    if _run_with_database(run):
        click.echo(f"Watching tab {tab_id}")
    else:
        click.echo(f"Tab {tab_id} already watched")


@tabs.command("unwatch")
@click.argument("tab_id")
def tabs_unwatch(tab_id: str) -> None:
    """Stop tracking the cards of TAB_ID."""
    from changewatch.roadmap.repository import RoadmapRepository

    async def run(db: Database) -> bool:
        return await RoadmapRepository(db).unwatch_tab(tab_id)

    if _run_with_database(run):
        click.echo(f"Stopped watching tab {tab_id}")
    else:
        click.echo(f"Tab {tab_id} was not watched")


@main.command("roadmap-history")
@click.option("--limit", default=5, help="Number of roadmap activities to show")
def roadmap_history(limit: int) -> None:
    """Show recent roadmap snapshots and their change logs."""
    from changewatch.roadmap.repository import RoadmapRepository

    async def run(db: Database) -> None:
        repo = RoadmapRepository(db)
        history = await repo.list_activities(limit=limit)
        if not history:
            click.echo("No roadmap activities")
            return

        for activity in history:
            changes = await repo.get_changes(activity.id)
            click.echo(f"\nActivity {activity.id} - {activity.timestamp.isoformat()}")
            click.echo("-" * 60)
            if not changes:
                click.echo("  (no logged changes)")
            for change in changes:
                click.echo(f"  {change.change_type:<14} {_describe_change(change)}")

    _run_with_database(run)


def _describe_change(change) -> str:
    if change.change_type in ("tab_added", "tab_removed") and change.tab:
        return f"{change.tab.name} ({change.tab.external_id})"
    if change.change_type == "card_modified" and change.previous_card and change.current_card:
        if change.previous_card.name == change.current_card.name:
            return change.current_card.name
        return f"{change.previous_card.name} -> {change.current_card.name}"
    card = change.current_card or change.previous_card
    return card.name if card else ""


if __name__ == "__main__":
    main()
