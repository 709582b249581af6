# tests/unit/test_bin_state.py
from datetime import date

import pytest

from binalloc.domain.bin_state import (
    EMPTY,
    Bin,
    ContentLine,
    MixedContent,
    PureContent,
    available_for_sku,
    check_invariants,
)
from binalloc.domain.errors import CapacityExceeded, InvariantViolation
from binalloc.models.enums import BinStatus
from tests.factories import empty_bin, mixed_bin, pure_bin


def test_put_into_empty_bin_becomes_pure():
    b = empty_bin("B1")
    assert b.status == BinStatus.AVAILABLE

    b.put(ContentLine(sku="SKU001", quantity=4))

    assert isinstance(b.content, PureContent)
    assert b.current_qty == 4
    assert b.primary_sku == "SKU001"
    assert b.status == BinStatus.OCCUPIED


def test_same_slot_merges_and_keeps_oldest_placed_seq():
    b = pure_bin("B1", "SKU001", 3, placed_seq=5)
    b.put(ContentLine(sku="SKU001", quantity=2, placed_seq=9))

    assert isinstance(b.content, PureContent)
    assert b.current_qty == 5
    assert b.content.placed_seq == 5


def test_different_lot_turns_bin_mixed_with_hint():
    b = pure_bin("B1", "SKU001", 3, lot="L1")
    b.put(ContentLine(sku="SKU001", quantity=2, lot_number="L2"))

    assert b.is_mixed
    assert len(b.lines) == 2
    assert b.primary_sku == "SKU001"
    check_invariants(b)


def test_take_last_other_line_collapses_to_pure():
    b = mixed_bin("B2", [("SKU001", 5), ("SKU002", 3)], hint="SKU001")

    b.take(("SKU002", None, None), 3)

    assert isinstance(b.content, PureContent)
    assert b.content.sku == "SKU001"
    assert b.current_qty == 5


def test_take_everything_empties_bin():
    b = pure_bin("B1", "SKU001", 4)
    b.take(("SKU001", None, None), 4)

    assert b.content is EMPTY
    assert b.status == BinStatus.AVAILABLE
    assert b.primary_sku is None


def test_take_more_than_slot_holds_is_a_fault():
    b = pure_bin("B1", "SKU001", 2)
    with pytest.raises(InvariantViolation):
        b.take(("SKU001", None, None), 3)
    assert b.current_qty == 2


def test_take_unknown_slot_is_a_fault():
    b = pure_bin("B1", "SKU001", 2)
    with pytest.raises(InvariantViolation):
        b.take(("SKU001", "LOT-X", None), 1)


def test_capacity_exceeded_leaves_bin_untouched():
    b = pure_bin("B1", "SKU001", 8, capacity=10)
    with pytest.raises(CapacityExceeded) as ei:
        b.put(ContentLine(sku="SKU002", quantity=3))

    assert ei.value.context["bin_code"] == "B1"
    assert isinstance(b.content, PureContent)
    assert b.current_qty == 8


def test_mixed_availability_ignores_primary_hint():
    # 历史标签是 SKU002，但 SKU002 实际只有 2
    b = mixed_bin("B1", [("SKU002", 2), ("SKU003", 8)], hint="SKU002")

    assert b.current_qty == 10
    assert available_for_sku(b.content, "SKU002") == 2
    assert available_for_sku(b.content, "SKU003") == 8
    assert available_for_sku(b.content, "SKU404") == 0


def test_check_invariants_rejects_duplicate_slots():
    b = Bin(
        code="B1",
        capacity=10,
        content=MixedContent(
            lines=(ContentLine(sku="A", quantity=1), ContentLine(sku="A", quantity=2)),
        ),
    )
    with pytest.raises(InvariantViolation):
        check_invariants(b)


def test_check_invariants_rejects_uncollapsed_mixed():
    b = Bin(code="B1", capacity=10, content=MixedContent(lines=(ContentLine(sku="A", quantity=1),)))
    with pytest.raises(InvariantViolation):
        check_invariants(b)


def test_check_invariants_rejects_over_capacity():
    b = Bin(code="B1", capacity=5, content=PureContent(sku="A", quantity=6))
    with pytest.raises(InvariantViolation):
        check_invariants(b)


# ---------------------------------------------------------------
# 记录形态
# ---------------------------------------------------------------
def test_record_roundtrip_keeps_mixed_lines_and_dates():
    b = Bin(
        code="B9",
        capacity=20,
        sequence=3,
        content=MixedContent(
            lines=(
                ContentLine(sku="A", quantity=4, lot_number="L1", expiry_date=date(2026, 1, 31), placed_seq=1),
                ContentLine(sku="B", quantity=6, placed_seq=2),
            ),
            primary_hint="A",
        ),
    )
    rec = b.to_record()
    assert rec["current_qty"] == 10
    assert rec["status"] == "occupied"
    assert rec["contents"][0]["expiry_date"] == "2026-01-31"

    again = Bin.from_record(rec)
    assert again == b


def test_from_record_rejects_qty_mismatch():
    rec = {
        "code": "B1",
        "capacity": 10,
        "current_qty": 10,
        "primary_sku": "SKU002",
        "contents": [{"sku": "SKU002", "quantity": 2}, {"sku": "SKU003", "quantity": 5}],
    }
    with pytest.raises(InvariantViolation) as ei:
        Bin.from_record(rec)
    assert ei.value.context["contents_sum"] == 7


def test_from_record_collapses_single_line_contents():
    rec = {
        "code": "B1",
        "capacity": 10,
        "current_qty": 4,
        "primary_sku": "OLD",
        "contents": [{"sku": "SKU005", "quantity": 4, "lot_number": "L7"}],
    }
    b = Bin.from_record(rec)
    assert isinstance(b.content, PureContent)
    assert b.primary_sku == "SKU005"
    assert b.content.lot_number == "L7"


def test_from_record_rejects_zero_qty_line():
    rec = {
        "code": "B1",
        "capacity": 10,
        "current_qty": 3,
        "contents": [{"sku": "A", "quantity": 3}, {"sku": "B", "quantity": 0}],
    }
    with pytest.raises(InvariantViolation):
        Bin.from_record(rec)


def test_from_record_requires_sku_for_pure_stock():
    with pytest.raises(InvariantViolation):
        Bin.from_record({"code": "B1", "capacity": 10, "current_qty": 3})
