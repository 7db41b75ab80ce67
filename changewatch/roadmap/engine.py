"""
Roadmap ingestion engine - snapshots the roadmap and records what changed.

Strictly sequential: fetch, load previous, diff, persist, notify. The
whole persist phase runs in one transaction, so a failed run leaves the
previous snapshot as the most recent one. Only one run should be active
at a time; the caller's scheduling guarantees that.
"""

import html
import time

import structlog

from changewatch.errors import ChangewatchError, LogicInvariantViolation
from changewatch.notifications.notifier import Notifier
from changewatch.roadmap.client import SnapshotClient
from changewatch.roadmap.config import RoadmapConfig
from changewatch.roadmap.diff import (
    diff,
    notify_count,
    should_notify,
    should_save,
    split_tab_changes,
)
from changewatch.roadmap.repository import RoadmapRepository, RoadmapWriter
from changewatch.roadmap.schemas import (
    CardAdded,
    CardModified,
    CardRemoved,
    CardUnchanged,
    Change,
    Roadmap,
    RoadmapCard,
    TabAdded,
    TabCardsNotInCurrent,
    TabCardsNotInPrevious,
    TabRemoved,
    TabUnchanged,
    find_card,
)

logger = structlog.get_logger(__name__)

NOTIFICATION_SUBJECT = "New changes on roadmap"


def _required_id(value: int | None, what: str) -> int:
    if value is None:
        raise LogicInvariantViolation(f"{what} has no database id")
    return value


def _positions(card: RoadmapCard) -> tuple[int, int]:
    if card.section_position is None or card.card_position is None:
        raise LogicInvariantViolation(
            f"Card {card.external_id!r} has no position in the current snapshot"
        )
    return card.section_position, card.card_position


class _SnapshotWriter:
    """Applies one diff result to one open transaction."""

    def __init__(
        self,
        writer: RoadmapWriter,
        activity_id: int,
        previous: Roadmap,
        current: Roadmap,
    ) -> None:
        self._writer = writer
        self._activity_id = activity_id
        self._previous = previous
        self._current = current
        # external tab id -> tab row carried onto the new activity
        self._tab_ids: dict[str, int] = {}
        self.cards_inserted = 0

    # ── Lookups ────────────────────────────────────────────

    def _previous_tab(self, index: int):
        try:
            return self._previous.tabs[index]
        except IndexError:
            raise LogicInvariantViolation(
                f"Tab index {index} missing from previous snapshot"
            ) from None

    def _current_tab(self, index: int):
        try:
            return self._current.tabs[index]
        except IndexError:
            raise LogicInvariantViolation(
                f"Tab index {index} missing from current snapshot"
            ) from None

    @staticmethod
    def _card(snapshot: Roadmap, tab_id: str, index: int, which: str) -> RoadmapCard:
        cards = snapshot.cards.get(tab_id)
        if cards is None or not 0 <= index < len(cards):
            raise LogicInvariantViolation(
                f"Card index {index} of tab {tab_id!r} missing from {which} snapshot"
            )
        return cards[index]

    def _tab_row(self, tab_id: str) -> int:
        try:
            return self._tab_ids[tab_id]
        except KeyError:
            raise LogicInvariantViolation(
                f"Tab {tab_id!r} has no row on the new activity"
            ) from None

    # ── Writes ─────────────────────────────────────────────

    async def _add_card(self, tab_row: int, card: RoadmapCard) -> int:
        section_position, card_position = _positions(card)
        card_row = await self._writer.insert_card(card)
        await self._writer.insert_card_assignment(
            self._activity_id, tab_row, card_row, section_position, card_position
        )
        self.cards_inserted += 1
        return card_row

    async def apply_tab_change(self, change: Change) -> None:
        if isinstance(change, TabAdded):
            tab = self._current_tab(change.tab_index)
            tab_row = await self._writer.insert_tab(tab)
            await self._writer.insert_tab_assignment(self._activity_id, tab_row)
            await self._writer.insert_change(
                "tab_added", self._activity_id, tab_id=tab_row
            )
            self._tab_ids[tab.external_id] = tab_row
        elif isinstance(change, TabRemoved):
            tab = self._previous_tab(change.tab_index)
            await self._writer.insert_change(
                "tab_removed",
                self._activity_id,
                tab_id=_required_id(tab.internal_id, f"Removed tab {tab.external_id!r}"),
            )
        elif isinstance(change, TabUnchanged):
            tab = self._previous_tab(change.tab_index)
            tab_row = _required_id(tab.internal_id, f"Tab {tab.external_id!r}")
            await self._writer.insert_tab_assignment(self._activity_id, tab_row)
            self._tab_ids[tab.external_id] = tab_row
        else:
            raise LogicInvariantViolation(f"Not a tab-level change: {change!r}")

    async def apply_card_change(self, change: Change) -> None:
        if isinstance(change, CardUnchanged):
            previous_card = self._card(
                self._previous, change.tab_id, change.card_index, "previous"
            )
            current_cards = self._current.cards.get(change.tab_id, ())
            current_index = find_card(current_cards, previous_card.external_id)
            if current_index is None:
                raise LogicInvariantViolation(
                    f"Unchanged card {previous_card.external_id!r} missing from "
                    "current snapshot"
                )
            section_position, card_position = _positions(current_cards[current_index])
            await self._writer.insert_card_assignment(
                self._activity_id,
                self._tab_row(change.tab_id),
                _required_id(
                    previous_card.internal_id, f"Card {previous_card.external_id!r}"
                ),
                section_position,
                card_position,
            )
        elif isinstance(change, CardAdded):
            card = self._card(self._current, change.tab_id, change.card_index, "current")
            tab_row = self._tab_row(change.tab_id)
            card_row = await self._add_card(tab_row, card)
            await self._writer.insert_change(
                "card_added", self._activity_id, current_card_id=card_row, tab_id=tab_row
            )
        elif isinstance(change, CardRemoved):
            card = self._card(
                self._previous, change.tab_id, change.card_index, "previous"
            )
            await self._writer.insert_change(
                "card_removed",
                self._activity_id,
                previous_card_id=_required_id(
                    card.internal_id, f"Removed card {card.external_id!r}"
                ),
                tab_id=self._tab_ids.get(change.tab_id),
            )
        elif isinstance(change, CardModified):
            previous_card = self._card(
                self._previous, change.tab_id, change.previous_card_index, "previous"
            )
            card = self._card(
                self._current, change.tab_id, change.current_card_index, "current"
            )
            tab_row = self._tab_row(change.tab_id)
            card_row = await self._add_card(tab_row, card)
            await self._writer.insert_change(
                "card_modified",
                self._activity_id,
                previous_card_id=_required_id(
                    previous_card.internal_id, f"Card {previous_card.external_id!r}"
                ),
                current_card_id=card_row,
                tab_id=tab_row,
            )
        elif isinstance(change, TabCardsNotInPrevious):
            tab = self._current_tab(change.tab_index)
            tab_row = self._tab_row(tab.external_id)
            for card in self._current.cards.get(tab.external_id, ()):
                await self._add_card(tab_row, card)
        elif isinstance(change, TabCardsNotInCurrent):
            pass
        else:
            raise LogicInvariantViolation(f"Not a card-level change: {change!r}")


class RoadmapIngestionEngine:
    """
    Captures the roadmap, diffs it against the last snapshot, and persists it.

    Usage:
        engine = RoadmapIngestionEngine(RoadmapRepository(db), SnapshotClient(), Notifier())
        await engine.run()
    """

    def __init__(
        self,
        repository: RoadmapRepository,
        client: SnapshotClient,
        notifier: Notifier,
        config: RoadmapConfig | None = None,
    ):
        self._repository = repository
        self._client = client
        self._notifier = notifier
        self._config = config or RoadmapConfig()

    async def run(self) -> int | None:
        """
        Run one check, logging instead of raising on failure.

        Returns:
            Id of the new roadmap activity, or None if nothing was saved.
        """
        start = time.monotonic()
        logger.info("Checking roadmap")
        try:
            activity_id = await self.check()
        except (ChangewatchError, ValueError) as e:
            logger.error(
                "Roadmap check failed",
                error=str(e),
                error_type=type(e).__name__,
                elapsed_seconds=round(time.monotonic() - start, 2),
            )
            return None

        logger.info(
            "Finished checking roadmap",
            activity_id=activity_id,
            elapsed_seconds=round(time.monotonic() - start, 2),
        )
        return activity_id

    async def check(self) -> int | None:
        """
        Run one check.

        Raises:
            NetworkError, ParseError: Fetching the roadmap failed; nothing written.
            PersistenceError: A write failed; the transaction was rolled back.
            LogicInvariantViolation: The diff disagrees with its snapshots.
        """
        watched = await self._repository.list_watched_tabs()
        current = await self._client.fetch(watched)
        previous = await self._repository.load_most_recent_snapshot()

        if previous is None:
            return await self._save_initial(current)

        changes = diff(previous, current)
        if not should_save(changes):
            logger.info("Roadmap unchanged", changes=len(changes))
            return None

        activity_id = await self._save_changes(previous, current, changes)

        if should_notify(changes):
            await self._notify(activity_id, notify_count(changes))
        return activity_id

    async def _save_initial(self, current: Roadmap) -> int:
        async with self._repository.transaction() as writer:
            activity_id = await writer.insert_roadmap_activity()
            for tab in current.tabs:
                tab_row = await writer.insert_tab(tab)
                await writer.insert_tab_assignment(activity_id, tab_row)

                for card in current.cards.get(tab.external_id, ()):
                    section_position, card_position = _positions(card)
                    card_row = await writer.insert_card(card)
                    await writer.insert_card_assignment(
                        activity_id, tab_row, card_row, section_position, card_position
                    )

        logger.info(
            "Saved initial roadmap snapshot",
            activity_id=activity_id,
            tabs=len(current.tabs),
            cards=current.card_count(),
        )
        return activity_id

    async def _save_changes(
        self, previous: Roadmap, current: Roadmap, changes: list[Change]
    ) -> int:
        tab_changes, card_changes = split_tab_changes(changes)

        async with self._repository.transaction() as writer:
            activity_id = await writer.insert_roadmap_activity()
            snapshot_writer = _SnapshotWriter(writer, activity_id, previous, current)

            for change in tab_changes:
                await snapshot_writer.apply_tab_change(change)
            for change in card_changes:
                await snapshot_writer.apply_card_change(change)

        logger.info(
            "Saved roadmap changes",
            activity_id=activity_id,
            changes=len(changes),
            notify_worthy=notify_count(changes),
            cards_inserted=snapshot_writer.cards_inserted,
        )
        return activity_id

    async def _notify(self, activity_id: int, count: int) -> None:
        url = self._config.activity_url(activity_id)
        noun = "change" if count == 1 else "changes"
        delivered = await self._notifier.notify(
            NOTIFICATION_SUBJECT,
            f"There are {count} new {noun} on the roadmap.\n\n{url}",
            f"<p>There are {count} new {noun} on the roadmap.</p>"
            f"<p><a href=\"{html.escape(url)}\">{html.escape(url)}</a></p>",
        )
        if not delivered:
            logger.warning("Roadmap notification not delivered", activity_id=activity_id)
