from __future__ import annotations

from typing import List

from shopping_tracker.domain.reorder import ReorderController, reorder


def test_dragging_last_onto_first_inserts_before_target() -> None:
    assert reorder(["A", "B", "C"], "C", "A") == ["C", "A", "B"]


def test_dragging_first_onto_last_takes_its_position() -> None:
    assert reorder(["A", "B", "C"], "A", "C") == ["B", "C", "A"]


def test_same_unset_or_unknown_ids_leave_order_unchanged() -> None:
    base = ["A", "B", "C"]
    assert reorder(base, "A", "A") == base
    assert reorder(base, None, "B") == base
    assert reorder(base, "A", None) == base
    assert reorder(base, "A", "Z") == base
    assert reorder(base, "Z", "A") == base
    assert reorder(["A"], "A", "A") == ["A"]


def test_reorder_returns_a_copy() -> None:
    base = ["A", "B"]
    result = reorder(base, "B", "A")
    assert result == ["B", "A"]
    assert base == ["A", "B"]


def test_controller_commits_new_order_from_live_sequence() -> None:
    live = ["A", "B", "C"]
    committed: List[List[str]] = []
    controller = ReorderController(lambda: live, committed.append)

    controller.start("C")
    # the collection changes mid-drag; the drop must use the live order
    live = ["A", "B", "C", "D"]
    controller.over("A")
    result = controller.drop()

    assert result == ["C", "A", "B", "D"]
    assert committed == [["C", "A", "B", "D"]]
    assert controller.dragged_id is None
    assert controller.target_id is None


def test_controller_drop_on_itself_is_noop_and_clears_state() -> None:
    committed: List[List[str]] = []
    controller = ReorderController(lambda: ["A", "B"], committed.append)
    controller.start("A")
    controller.over("A")
    assert controller.drop() is None
    assert committed == []
    assert not controller.is_dragging


def test_controller_drop_on_vanished_target_is_noop() -> None:
    committed: List[List[str]] = []
    controller = ReorderController(lambda: ["A", "B"], committed.append)
    controller.start("A")
    controller.over("gone")
    assert controller.drop() is None
    assert committed == []


def test_collapse_while_dragging_restores_expansion() -> None:
    controller = ReorderController(lambda: ["A", "B"], lambda order: None, collapse_while_dragging=True)
    controller.start("A")
    assert "A" in controller.collapsed
    controller.cancel()
    assert "A" not in controller.collapsed

    controller.collapsed.add("B")
    controller.start("B")
    controller.over("A")
    controller.drop()
    assert "B" in controller.collapsed
