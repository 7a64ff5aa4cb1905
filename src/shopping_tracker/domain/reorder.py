"""Drag-to-reorder for categories and for items inside one category.

Everything is tracked by identifier rather than index: the underlying
collection can change while a drag is in flight, and an id that vanished
simply turns the drop into a no-op.
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Sequence, Set

from ..logging import get_logger

LOG = get_logger("reorder")


def reorder(sequence: Sequence[str], dragged_id: Optional[str], target_id: Optional[str]) -> List[str]:
    """Move ``dragged_id`` to the position currently held by ``target_id``.

    The dragged id is removed and reinserted at the target's index in the
    same pass, so dragging C onto A in [A, B, C] gives [C, A, B]. Unknown,
    unset or identical ids return an unchanged copy.
    """
    order = list(sequence)
    if not dragged_id or not target_id or dragged_id == target_id:
        return order
    try:
        current_index = order.index(dragged_id)
        target_index = order.index(target_id)
    except ValueError:
        return order
    moved = order.pop(current_index)
    order.insert(target_index, moved)
    return order


class ReorderController:
    """Gesture state for one ordered collection.

    ``current_order`` is called at drop time so the reorder always starts
    from the live order; ``commit`` receives the new id sequence and is
    expected to persist it (e.g. ``ShoppingListStore.reorder_categories``).
    """

    def __init__(
        self,
        current_order: Callable[[], Sequence[str]],
        commit: Callable[[List[str]], Any],
        *,
        collapse_while_dragging: bool = False,
    ) -> None:
        self._current_order = current_order
        self._commit = commit
        self._collapse = collapse_while_dragging
        self.dragged_id: Optional[str] = None
        self.target_id: Optional[str] = None
        self.collapsed: Set[str] = set()
        self._was_collapsed = False

    @property
    def is_dragging(self) -> bool:
        return self.dragged_id is not None

    def start(self, entity_id: str) -> None:
        self.dragged_id = entity_id
        self.target_id = None
        if self._collapse:
            self._was_collapsed = entity_id in self.collapsed
            self.collapsed.add(entity_id)

    def over(self, entity_id: Optional[str]) -> None:
        if self.dragged_id is None:
            return
        self.target_id = entity_id

    def drop(self) -> Optional[List[str]]:
        """Finish the drag; returns the committed order or None for a no-op."""
        dragged, target = self.dragged_id, self.target_id
        self._clear()
        if not dragged or not target or dragged == target:
            return None
        before = list(self._current_order())
        after = reorder(before, dragged, target)
        if after == before:
            LOG.debug("Drop of %s onto %s left the order unchanged", dragged, target)
            return None
        self._commit(after)
        return after

    def cancel(self) -> None:
        self._clear()

    def _clear(self) -> None:
        if self._collapse and self.dragged_id is not None and not self._was_collapsed:
            self.collapsed.discard(self.dragged_id)
        self.dragged_id = None
        self.target_id = None
        self._was_collapsed = False
