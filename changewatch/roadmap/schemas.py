"""
Roadmap snapshot model and the change variants computed between snapshots.

Tabs and cards are identified by their external id alone; name, slug and
content changes never alter identity. A Roadmap keeps every tab's cards
sorted by external id, which the differ's binary search depends on, so
snapshots are built through Roadmap.create().
"""

from bisect import bisect_left
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from operator import attrgetter
from types import MappingProxyType
from typing import Literal

_external_id = attrgetter("external_id")


@dataclass(eq=False)
class RoadmapTab:
    """A roadmap tab. ``internal_id`` is set once the tab has a database row."""

    external_id: str
    name: str
    slug: str
    internal_id: int | None = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RoadmapTab):
            return NotImplemented
        return self.external_id == other.external_id

    def __hash__(self) -> int:
        return hash(self.external_id)


@dataclass(eq=False)
class RoadmapCard:
    """A roadmap card placed in a tab section.

    Only ``name``, ``description`` and ``image_url`` are content; the
    position fields record where the card sat in one particular snapshot.
    """

    external_id: str
    name: str
    description: str
    slug: str
    image_url: str | None = None
    internal_id: int | None = None
    section_position: int | None = None
    card_position: int | None = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RoadmapCard):
            return NotImplemented
        return self.external_id == other.external_id

    def __hash__(self) -> int:
        return hash(self.external_id)

    def same_content(self, other: "RoadmapCard") -> bool:
        """True if name, description and image are all equal."""
        return (
            self.name == other.name
            and self.description == other.description
            and self.image_url == other.image_url
        )


@dataclass(frozen=True)
class Roadmap:
    """One consistent capture of the roadmap.

    ``cards`` only holds watched tabs; a tab can appear in ``tabs``
    without an entry in ``cards``.
    """

    tabs: tuple[RoadmapTab, ...]
    cards: Mapping[str, tuple[RoadmapCard, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def create(
        cls,
        tabs: Iterable[RoadmapTab],
        cards: Mapping[str, Iterable[RoadmapCard]] | None = None,
    ) -> "Roadmap":
        """Build a snapshot, sorting each tab's cards by external id."""
        sorted_cards = {
            tab_id: tuple(sorted(tab_cards, key=_external_id))
            for tab_id, tab_cards in (cards or {}).items()
        }
        return cls(tabs=tuple(tabs), cards=MappingProxyType(sorted_cards))

    def tab_index(self, external_id: str) -> int | None:
        """Position of the tab with ``external_id`` in ``tabs``."""
        for index, tab in enumerate(self.tabs):
            if tab.external_id == external_id:
                return index
        return None

    def has_tab(self, external_id: str) -> bool:
        return self.tab_index(external_id) is not None

    def card_count(self) -> int:
        return sum(len(tab_cards) for tab_cards in self.cards.values())


def find_card(cards: tuple[RoadmapCard, ...], external_id: str) -> int | None:
    """Binary-search a sorted card sequence; returns the index or None."""
    index = bisect_left(cards, external_id, key=_external_id)
    if index < len(cards) and cards[index].external_id == external_id:
        return index
    return None


# ── Changes ────────────────────────────────────────────────
# Indices point into the previous or current snapshot's sequences.


@dataclass(frozen=True)
class CardUnchanged:
    tab_id: str
    card_index: int


@dataclass(frozen=True)
class CardAdded:
    """``card_index`` is into the current snapshot."""

    tab_id: str
    card_index: int


@dataclass(frozen=True)
class CardRemoved:
    """``card_index`` is into the previous snapshot."""

    tab_id: str
    card_index: int


@dataclass(frozen=True)
class CardModified:
    tab_id: str
    previous_card_index: int
    current_card_index: int


@dataclass(frozen=True)
class TabUnchanged:
    tab_index: int


@dataclass(frozen=True)
class TabAdded:
    """``tab_index`` is into the current snapshot."""

    tab_index: int


@dataclass(frozen=True)
class TabRemoved:
    """``tab_index`` is into the previous snapshot."""

    tab_index: int


@dataclass(frozen=True)
class TabCardsNotInCurrent:
    """A tab had cards previously but none are tracked now (previous index)."""

    tab_index: int


@dataclass(frozen=True)
class TabCardsNotInPrevious:
    """A tab has cards now that were not tracked before (current index)."""

    tab_index: int


Change = (
    CardUnchanged
    | CardAdded
    | CardRemoved
    | CardModified
    | TabUnchanged
    | TabAdded
    | TabRemoved
    | TabCardsNotInCurrent
    | TabCardsNotInPrevious
)

TAB_CHANGES = (TabAdded, TabRemoved, TabUnchanged)
NOTIFY_CHANGES = (CardAdded, CardModified, CardRemoved, TabAdded, TabRemoved)
SAVE_ONLY_CHANGES = (TabCardsNotInCurrent, TabCardsNotInPrevious)


# ── Persisted history ──────────────────────────────────────

ChangeType = Literal[
    "tab_added",
    "tab_removed",
    "card_added",
    "card_removed",
    "card_modified",
]


@dataclass
class RoadmapActivity:
    """One persisted snapshot (a row of roadmap_activities)."""

    id: int
    timestamp: datetime


@dataclass
class ChangeRecord:
    """A change-log row resolved against the tab and card rows it references."""

    id: int
    change_type: str
    activity_id: int
    previous_card: RoadmapCard | None = None
    current_card: RoadmapCard | None = None
    tab: RoadmapTab | None = None
