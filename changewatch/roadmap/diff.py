"""
Structured diff between two roadmap snapshots.

Pure functions, no I/O. The output order is part of the contract: all
tab-level changes come first (previous tabs in order, then added tabs),
followed by the card pass over the previous snapshot and the card pass
over the current one. Persistence relies on that order to resolve tab
ids before any card row is written.
"""

import logging

from changewatch.errors import LogicInvariantViolation
from changewatch.roadmap.schemas import (
    NOTIFY_CHANGES,
    SAVE_ONLY_CHANGES,
    TAB_CHANGES,
    CardAdded,
    CardModified,
    CardRemoved,
    CardUnchanged,
    Change,
    Roadmap,
    TabAdded,
    TabCardsNotInCurrent,
    TabCardsNotInPrevious,
    TabRemoved,
    TabUnchanged,
    find_card,
)

logger = logging.getLogger(__name__)


def _tab_changes(previous: Roadmap, current: Roadmap) -> list[Change]:
    current_ids = {tab.external_id for tab in current.tabs}
    previous_ids = {tab.external_id for tab in previous.tabs}

    changes: list[Change] = []
    for index, tab in enumerate(previous.tabs):
        if tab.external_id in current_ids:
            changes.append(TabUnchanged(tab_index=index))
        else:
            changes.append(TabRemoved(tab_index=index))

    for index, tab in enumerate(current.tabs):
        if tab.external_id not in previous_ids:
            changes.append(TabAdded(tab_index=index))

    return changes


def _resolve_tab_index(snapshot: Roadmap, tab_id: str, which: str) -> int:
    index = snapshot.tab_index(tab_id)
    if index is None:
        raise LogicInvariantViolation(
            f"{which} snapshot has cards for tab {tab_id!r} but no such tab"
        )
    return index


def _removed_and_modified(previous: Roadmap, current: Roadmap) -> list[Change]:
    changes: list[Change] = []

    for tab_id, previous_cards in previous.cards.items():
        current_cards = current.cards.get(tab_id)
        if current_cards is None:
            changes.append(
                TabCardsNotInCurrent(
                    tab_index=_resolve_tab_index(previous, tab_id, "Previous")
                )
            )
            continue

        for index, card in enumerate(previous_cards):
            current_index = find_card(current_cards, card.external_id)
            if current_index is None:
                changes.append(CardRemoved(tab_id=tab_id, card_index=index))
            elif card.same_content(current_cards[current_index]):
                changes.append(CardUnchanged(tab_id=tab_id, card_index=index))
            else:
                changes.append(
                    CardModified(
                        tab_id=tab_id,
                        previous_card_index=index,
                        current_card_index=current_index,
                    )
                )

    return changes


def _added(previous: Roadmap, current: Roadmap) -> list[Change]:
    changes: list[Change] = []

    for tab_id, current_cards in current.cards.items():
        previous_cards = previous.cards.get(tab_id)
        if previous_cards is None:
            changes.append(
                TabCardsNotInPrevious(
                    tab_index=_resolve_tab_index(current, tab_id, "Current")
                )
            )
            continue

        for index, card in enumerate(current_cards):
            if find_card(previous_cards, card.external_id) is None:
                changes.append(CardAdded(tab_id=tab_id, card_index=index))

    return changes


def diff(previous: Roadmap, current: Roadmap) -> list[Change]:
    """Classify every tab and card difference between two snapshots."""
    changes = _tab_changes(previous, current)
    changes.extend(_removed_and_modified(previous, current))
    changes.extend(_added(previous, current))
    logger.debug("Computed %d roadmap changes", len(changes))
    return changes


def should_notify(changes: list[Change]) -> bool:
    """True if any change is worth telling a human about."""
    return any(isinstance(change, NOTIFY_CHANGES) for change in changes)


def should_save(changes: list[Change]) -> bool:
    """True if the current snapshot differs enough to be persisted."""
    return should_notify(changes) or any(
        isinstance(change, SAVE_ONLY_CHANGES) for change in changes
    )


def notify_count(changes: list[Change]) -> int:
    """Number of notify-worthy changes."""
    return sum(isinstance(change, NOTIFY_CHANGES) for change in changes)


def split_tab_changes(changes: list[Change]) -> tuple[list[Change], list[Change]]:
    """Split at the first change that is not tab-level."""
    for index, change in enumerate(changes):
        if not isinstance(change, TAB_CHANGES):
            return changes[:index], changes[index:]
    return list(changes), []
