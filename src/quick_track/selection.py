"""Selection state for Quick Track bulk approval.

Pure state, no I/O. The selection is always a subset of the available ids;
every mutation that could break that is followed by a prune.
"""

from collections.abc import Iterable
from uuid import UUID


class SelectionManager:
    """Tracks which of the available progress ids are selected."""

    def __init__(self, available_ids: Iterable[UUID] = ()) -> None:
        self._available: list[UUID] = []
        self._available_set: set[UUID] = set()
        self._selected: set[UUID] = set()
        self.update_available_ids(available_ids)

    # ==========================================================================
    # Mutations
    # ==========================================================================

    def update_available_ids(self, ids: Iterable[UUID]) -> None:
        """Replace the available universe, dropping selections no longer in it."""
        ordered = list(dict.fromkeys(ids))
        self._available = ordered
        self._available_set = set(ordered)
        self._selected &= self._available_set

    def select(self, progress_id: UUID) -> None:
        """Select an id. Ids outside the available set are ignored."""
        if progress_id in self._available_set:
            self._selected.add(progress_id)

    def deselect(self, progress_id: UUID) -> None:
        self._selected.discard(progress_id)

    def toggle_selection(self, progress_id: UUID) -> None:
        if progress_id in self._selected:
            self.deselect(progress_id)
        else:
            self.select(progress_id)

    def select_all(self) -> None:
        self._selected = set(self._available_set)

    def deselect_all(self) -> None:
        self._selected.clear()

    def remove_ids(self, ids: Iterable[UUID]) -> None:
        """Drop ids from the available set (and so from the selection)."""
        drop = set(ids)
        self.update_available_ids(i for i in self._available if i not in drop)

    # ==========================================================================
    # Queries
    # ==========================================================================

    def is_all_selected(self) -> bool:
        return bool(self._available) and len(self._selected) == len(self._available_set)

    def is_some_selected(self) -> bool:
        return bool(self._selected) and not self.is_all_selected()

    def is_selected(self, progress_id: UUID) -> bool:
        return progress_id in self._selected

    @property
    def selected_ids(self) -> list[UUID]:
        """Selected ids in available order."""
        return [i for i in self._available if i in self._selected]

    @property
    def available_ids(self) -> list[UUID]:
        return list(self._available)

    @property
    def selected_count(self) -> int:
        return len(self._selected)
