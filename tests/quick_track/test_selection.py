"""Tests for SelectionManager."""

from uuid import uuid4

import pytest

from src.quick_track.selection import SelectionManager


@pytest.fixture
def ids():
    return [uuid4() for _ in range(4)]


@pytest.fixture
def selection(ids) -> SelectionManager:
    return SelectionManager(ids)


class TestSelect:
    """Tests for selecting and deselecting."""

    def test_select_and_toggle(self, selection, ids):
        selection.select(ids[0])
        selection.toggle_selection(ids[1])
        selection.toggle_selection(ids[0])

        assert selection.selected_ids == [ids[1]]
        assert selection.is_selected(ids[1])
        assert not selection.is_selected(ids[0])

    def test_unknown_id_is_ignored(self, selection):
        selection.select(uuid4())
        selection.toggle_selection(uuid4())

        assert selection.selected_count == 0

    def test_selected_ids_follow_available_order(self, selection, ids):
        for progress_id in reversed(ids):
            selection.select(progress_id)

        assert selection.selected_ids == ids

    def test_duplicates_in_available_are_collapsed(self, ids):
        selection = SelectionManager([ids[0], ids[1], ids[0]])

        assert selection.available_ids == [ids[0], ids[1]]


class TestAggregateState:
    """Tests for all/some selected."""

    def test_select_all_and_deselect_all(self, selection, ids):
        selection.select_all()
        assert selection.is_all_selected()
        assert not selection.is_some_selected()

        selection.deselect_all()
        assert selection.selected_count == 0
        assert not selection.is_all_selected()
        assert not selection.is_some_selected()

    def test_partial_selection(self, selection, ids):
        selection.select(ids[2])

        assert selection.is_some_selected()
        assert not selection.is_all_selected()

    def test_empty_available_is_never_all_selected(self):
        selection = SelectionManager()
        selection.select_all()

        assert not selection.is_all_selected()
        assert not selection.is_some_selected()


class TestAvailableUpdates:
    """Tests that the selection stays within the available set."""

    def test_update_prunes_selection(self, selection, ids):
        selection.select_all()

        selection.update_available_ids(ids[1:3])

        assert selection.selected_ids == ids[1:3]
        assert selection.is_all_selected()

    def test_remove_ids_drops_from_both(self, selection, ids):
        selection.select(ids[0])
        selection.select(ids[3])

        selection.remove_ids([ids[0], ids[1]])

        assert selection.available_ids == ids[2:]
        assert selection.selected_ids == [ids[3]]
