"""Tests for the snapshot differ."""

import pytest

from changewatch.errors import LogicInvariantViolation
from changewatch.roadmap.diff import (
    diff,
    notify_count,
    should_notify,
    should_save,
    split_tab_changes,
)
from changewatch.roadmap.schemas import (
    TAB_CHANGES,
    CardAdded,
    CardModified,
    CardRemoved,
    CardUnchanged,
    Roadmap,
    TabAdded,
    TabCardsNotInCurrent,
    TabCardsNotInPrevious,
    TabRemoved,
    TabUnchanged,
)
from tests.test_roadmap.conftest import card, roadmap, tab


@pytest.fixture
def two_tab_roadmap():
    return roadmap(
        [tab("t1"), tab("t2")],
        {
            "t1": [card("c1", description="first"), card("c2", image_url="x.png")],
            "t2": [card("c9")],
        },
    )


class TestIdempotence:
    def test_diff_with_itself_has_no_changes(self, two_tab_roadmap):
        changes = diff(two_tab_roadmap, two_tab_roadmap)

        assert all(isinstance(c, (TabUnchanged, CardUnchanged)) for c in changes)
        assert len(changes) == 2 + 3
        assert not should_notify(changes)
        assert not should_save(changes)

    def test_empty_snapshots(self):
        assert diff(Roadmap.create([]), Roadmap.create([])) == []


class TestTabChanges:
    """Tab pass: previous tabs in order, then added tabs."""

    def test_added_and_removed_tabs(self):
        previous = roadmap([tab("t1"), tab("t2")])
        current = roadmap([tab("t3"), tab("t1")])

        changes = diff(previous, current)

        assert changes == [TabUnchanged(0), TabRemoved(1), TabAdded(0)]
        assert should_notify(changes)

    def test_tab_changes_form_a_prefix(self, two_tab_roadmap):
        current = roadmap(
            [tab("t2"), tab("t4"), tab("t5")],
            {"t2": [card("c9", name="edited")], "t4": [card("n1")]},
        )

        changes = diff(two_tab_roadmap, current)
        prefix, rest = split_tab_changes(changes)

        assert len(prefix) == len(two_tab_roadmap.tabs) + 2
        assert all(isinstance(c, TAB_CHANGES) for c in prefix)
        assert not any(isinstance(c, TAB_CHANGES) for c in rest)

    def test_renamed_tab_is_unchanged(self):
        changes = diff(roadmap([tab("t1", name="Old")]), roadmap([tab("t1", name="New")]))
        assert changes == [TabUnchanged(0)]


class TestCardChanges:
    def test_edit_remove_add_scenario(self):
        previous = roadmap([tab("t1")], {"t1": [card("c1", name="A"), card("c2", name="B")]})
        current = roadmap([tab("t1")], {"t1": [card("c1", name="A-edited"), card("c3", name="C")]})

        changes = diff(previous, current)

        assert changes == [
            TabUnchanged(0),
            CardModified(tab_id="t1", previous_card_index=0, current_card_index=0),
            CardRemoved(tab_id="t1", card_index=1),
            CardAdded(tab_id="t1", card_index=1),
        ]
        assert should_notify(changes)
        assert notify_count(changes) == 3

    def test_position_only_change_is_unchanged(self):
        previous = roadmap([tab("t1")], {"t1": [card("c1", section_position=0, card_position=0)]})
        current = roadmap([tab("t1")], {"t1": [card("c1", section_position=2, card_position=5)]})

        changes = diff(previous, current)

        assert changes == [TabUnchanged(0), CardUnchanged(tab_id="t1", card_index=0)]

    @pytest.mark.parametrize(
        "field, value",
        [("name", "renamed"), ("description", "new text"), ("image_url", "new.png")],
    )
    def test_content_change_is_modified(self, field, value):
        original = card("c1", description="text", image_url="old.png")
        edited = card("c1", description="text", image_url="old.png")
        setattr(edited, field, value)

        changes = diff(roadmap([tab("t1")], {"t1": [original]}), roadmap([tab("t1")], {"t1": [edited]}))

        assert isinstance(changes[1], CardModified)

    def test_indices_refer_to_sorted_positions(self):
        previous = roadmap([tab("t1")], {"t1": [card("b"), card("a")]})
        current = roadmap([tab("t1")], {"t1": [card("c"), card("b"), card("a")]})

        changes = diff(previous, current)

        assert CardAdded(tab_id="t1", card_index=2) in changes


class TestWholeTabCards:
    """Tabs whose cards appear in only one snapshot."""

    def test_cards_not_in_current(self):
        previous = roadmap([tab("t1"), tab("t2")], {"t1": [card("c1")], "t2": [card("c2")]})
        current = roadmap([tab("t1"), tab("t2")], {"t1": [card("c1")]})

        changes = diff(previous, current)

        assert TabCardsNotInCurrent(tab_index=1) in changes
        assert not any(isinstance(c, CardRemoved) for c in changes)
        assert not should_notify(changes)
        assert should_save(changes)

    def test_cards_not_in_previous(self):
        previous = roadmap([tab("t1"), tab("t2")], {"t1": [card("c1")]})
        current = roadmap([tab("t1"), tab("t2")], {"t1": [card("c1")], "t2": [card("x"), card("y")]})

        changes = diff(previous, current)

        assert changes[-1] == TabCardsNotInPrevious(tab_index=1)
        assert not any(isinstance(c, CardAdded) for c in changes)
        assert should_save(changes)
        assert not should_notify(changes)

    def test_cards_for_unknown_tab_is_a_logic_error(self):
        previous = roadmap([tab("t1")], {"t1": [card("c1")]})
        current = roadmap([tab("t1")], {"t1": [card("c1")], "ghost": [card("c2")]})

        with pytest.raises(LogicInvariantViolation):
            diff(previous, current)


class TestSplitTabChanges:
    def test_only_tab_changes(self):
        changes = [TabUnchanged(0), TabAdded(1)]
        assert split_tab_changes(changes) == (changes, [])

    def test_no_tab_changes(self):
        changes = [CardUnchanged(tab_id="t1", card_index=0)]
        assert split_tab_changes(changes) == ([], changes)
