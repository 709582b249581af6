# tests/unit/test_pick_coordinator.py
import pytest

from binalloc.domain.bin_state import PureContent, check_all
from binalloc.domain.errors import PickConsistencyFault
from binalloc.models.enums import PickState
from binalloc.services.availability_resolver import AvailabilityResolver
from binalloc.services.pick_coordinator import PickCoordinator, PickRequestLine
from binalloc.services.pick_executor import PickExecutor
from tests.factories import mixed_bin, pure_bin, total_qty


def test_pick_from_mixed_bin_collapses_back_to_pure():
    bins = [pure_bin("B1", "SKU001", 10, sequence=1), mixed_bin("B2", [("SKU001", 5), ("SKU002", 3)], sequence=2)]

    res = PickCoordinator().run(bins, [PickRequestLine("SKU002", 3)])

    assert res.state == PickState.DONE
    assert res.transitions == [PickState.CHECKING, PickState.ALL_AVAILABLE, PickState.EXECUTING, PickState.DONE]
    leg = res.lines[0].execution.legs[0]
    assert (leg.bin_code, leg.qty, leg.was_mixed, leg.collapsed, leg.bin_emptied) == ("B2", 3, True, True, False)

    after = res.bins_after["B2"]
    assert isinstance(after.content, PureContent)
    assert after.content.sku == "SKU001"
    assert after.current_qty == 5
    # 入参不被修改
    assert bins[1].is_mixed
    assert set(res.bins_after) == {"B2"}


def test_rejected_when_any_line_is_short_and_nothing_changes():
    bins = [pure_bin("B1", "SKU001", 10, sequence=1)]
    snapshot = [b.clone() for b in bins]

    res = PickCoordinator().run(bins, [PickRequestLine("SKU001", 3), PickRequestLine("SKU099", 2)])

    assert res.state == PickState.REJECTED
    assert res.transitions == [PickState.CHECKING, PickState.SOME_UNAVAILABLE, PickState.REJECTED]
    assert res.lines == []
    assert res.bins_after == {}
    assert bins == snapshot

    [short] = res.shortfalls
    assert (short.line_index, short.sku, short.short_qty) == (1, "SKU099", 2)
    assert short.to_dict()["reason"] == "insufficient_stock"


def test_same_sku_on_two_lines_is_not_promised_twice():
    bins = [pure_bin("B1", "SKU001", 5, sequence=1)]
    res = PickCoordinator().run(bins, [PickRequestLine("SKU001", 3), PickRequestLine("SKU001", 3)])

    assert res.state == PickState.REJECTED
    [short] = res.shortfalls
    assert (short.line_index, short.available_qty, short.short_qty) == (1, 2, 1)


def test_per_line_availability_shows_what_is_left_for_that_line():
    bins = [pure_bin("B1", "SKU001", 5, sequence=1)]
    res = PickCoordinator().run(bins, [PickRequestLine("SKU001", 3), PickRequestLine("SKU001", 3)])

    first, second = res.checks
    assert (first.total_available, first.shortfall) == (5, 0)
    assert (second.total_available, second.shortfall) == (2, 1)
    assert [(c.bin_code, c.available_qty) for c in second.candidates] == [("B1", 2)]
    assert res.shortfalls[0].available_qty == second.total_available


def test_same_sku_lines_consume_fifo_in_request_order():
    bins = [pure_bin("OLD", "SKU001", 4, sequence=2, placed_seq=1), pure_bin("NEW", "SKU001", 4, sequence=1, placed_seq=2)]
    res = PickCoordinator().run(bins, [PickRequestLine("SKU001", 3), PickRequestLine("SKU001", 3)])

    assert res.ok
    first = [(lg.bin_code, lg.qty) for lg in res.lines[0].execution.legs]
    second = [(lg.bin_code, lg.qty) for lg in res.lines[1].execution.legs]
    assert first == [("OLD", 3)]
    assert second == [("OLD", 1), ("NEW", 2)]
    assert res.bins_after["OLD"].is_empty
    assert res.bins_after["NEW"].current_qty == 2


def test_pick_conserves_quantity_and_keeps_invariants():
    bins = [
        mixed_bin("M1", [("A", 2), ("B", 3), ("C", 4)], sequence=1),
        pure_bin("P1", "A", 6, sequence=2),
        mixed_bin("M2", [("B", 1), ("A", 1)], sequence=3),
    ]
    before = total_qty(bins)
    lines = [PickRequestLine("A", 8), PickRequestLine("B", 4)]

    res = PickCoordinator().run(bins, lines)

    assert res.ok
    after = [res.bins_after.get(b.code, b) for b in bins]
    check_all(after)
    picked = sum(ln.execution.picked_qty for ln in res.lines)
    assert picked == 12
    assert before - total_qty(after) == picked
    assert total_qty(after, "A") == 1
    assert total_qty(after, "B") == 0


def test_planning_and_execution_agree_per_slot():
    bins = [mixed_bin("M1", [("A", 2), ("B", 3)], sequence=1), pure_bin("P1", "A", 6, sequence=2)]
    checks, shortfalls, promises = PickCoordinator().check(bins, [PickRequestLine("A", 5)])

    assert shortfalls == []
    planned = {(c.bin_code, c.slot_key): q for c, q in checks[0].planned_takes()}
    assert planned == promises[0]

    res = PickCoordinator().run(bins, [PickRequestLine("A", 5)])
    got = {(lg.bin_code, (lg.sku, lg.lot_number, lg.expiry_date)): lg.qty for lg in res.lines[0].execution.legs}
    assert got == promises[0]


class _DriftingExecutor(PickExecutor):
    """模拟两阶段之间有人改了库位：执行时只扣到一半。"""

    def execute(self, bins_by_code, candidates, requested_qty, *, sku):
        return super().execute(bins_by_code, candidates, max(1, requested_qty // 2), sku=sku)


def test_phase_drift_raises_consistency_fault_with_applied_lines():
    bins = [pure_bin("B1", "A", 10, sequence=1), pure_bin("B2", "B", 10, sequence=2)]
    coord = PickCoordinator(resolver=AvailabilityResolver(), executor=_DriftingExecutor())

    with pytest.raises(PickConsistencyFault) as ei:
        coord.run(bins, [PickRequestLine("A", 1), PickRequestLine("B", 4)])

    fault = ei.value
    assert fault.line_index == 1
    assert fault.sku == "B"
    assert (fault.expected_qty, fault.actual_qty) == (4, 2)
    assert fault.applied_lines == [0]
    assert fault.details[0]["reason"] == "phase_drift"
    # 在副本上执行：入参不动
    assert bins[0].current_qty == 10
    assert bins[1].current_qty == 10


def test_empty_pick_request_is_invalid():
    with pytest.raises(ValueError):
        PickCoordinator().run([], [])
