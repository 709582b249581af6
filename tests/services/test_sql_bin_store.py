# tests/services/test_sql_bin_store.py
from datetime import date, datetime, timedelta, timezone

import pytest
import sqlalchemy as sa

from binalloc.domain.bin_state import PureContent
from binalloc.domain.errors import BinConflict, BinNotFound, InvariantViolation
from binalloc.models.bin import BinContentLineRow, BinRow
from binalloc.models.enums import OperationType, PickState
from binalloc.services.bin_engine import WarehouseBinEngine
from binalloc.services.bin_locks import BinHoldManager
from binalloc.services.pick_coordinator import PickRequestLine
from binalloc.services.putaway_allocator import PutawayRequest
from tests.factories import empty_bin, mixed_bin

WH = 7


@pytest.mark.asyncio
async def test_register_and_load_roundtrip(sql_store):
    await sql_store.register_bins(
        WH,
        [
            empty_bin("A1", sequence=2),
            mixed_bin("A0", [("SKU001", 2), ("SKU002", 3)], sequence=1, hint="SKU001"),
        ],
    )

    bins = await sql_store.load_bins(WH)

    assert [b.code for b in bins] == ["A0", "A1"]
    assert bins[0].is_mixed
    assert bins[0].primary_sku == "SKU001"
    assert {ln.sku: ln.quantity for ln in bins[0].lines} == {"SKU001": 2, "SKU002": 3}
    assert bins[1].is_empty
    assert await sql_store.load_bins(WH + 1) == []


@pytest.mark.asyncio
async def test_register_duplicate_code_conflicts(sql_store):
    await sql_store.register_bins(WH, [empty_bin("A1")])
    with pytest.raises(BinConflict):
        await sql_store.register_bins(WH, [empty_bin("A1")])
    # 其它仓可以用同一编码
    await sql_store.register_bins(WH + 1, [empty_bin("A1")])


@pytest.mark.asyncio
async def test_save_replaces_content_lines_on_collapse(sql_store, sql_engine):
    await sql_store.register_bins(WH, [mixed_bin("M", [("SKU001", 5), ("SKU002", 3)], sequence=1)])
    [b] = await sql_store.load_bins(WH)

    b.take(("SKU002", None, None), 3)
    await sql_store.save_bins(WH, [b])

    [again] = await sql_store.load_bins(WH)
    assert isinstance(again.content, PureContent)
    assert (again.content.sku, again.current_qty) == ("SKU001", 5)

    async with sql_engine.connect() as conn:
        n = (await conn.execute(sa.select(sa.func.count()).select_from(BinContentLineRow))).scalar_one()
    assert n == 0


@pytest.mark.asyncio
async def test_save_unknown_bin_raises_and_writes_nothing(sql_store):
    await sql_store.register_bins(WH, [empty_bin("A1")])
    [a1] = await sql_store.load_bins(WH)
    a1.put(PureContent(sku="X", quantity=1).as_line())

    with pytest.raises(BinNotFound):
        await sql_store.save_bins(WH, [a1, empty_bin("GHOST")])

    [a1] = await sql_store.load_bins(WH)
    assert a1.is_empty


@pytest.mark.asyncio
async def test_load_rejects_corrupted_row(sql_store, sql_engine):
    await sql_store.register_bins(WH, [mixed_bin("M", [("SKU002", 2), ("SKU003", 8)], hint="SKU002")])

    # 直接改库：记录总量与内容不守恒
    async with sql_engine.begin() as conn:
        await conn.execute(sa.update(BinRow).where(BinRow.code == "M").values(current_qty=9))

    with pytest.raises(InvariantViolation):
        await sql_store.load_bins(WH)


@pytest.mark.asyncio
async def test_engine_over_sql_store_end_to_end(sql_store):
    engine = WarehouseBinEngine(sql_store, holds=BinHoldManager(timeout=0.2))
    await engine.register_bins(WH, [{"code": "B1", "capacity": 10}, {"code": "B2", "capacity": 10}])

    await engine.putaway(WH, [PutawayRequest("SKU001", 12, lot_number="L1", expiry_date=date(2026, 9, 1))])
    out = await engine.pick(WH, [PickRequestLine("SKU001", 11)])

    assert out.result.state == PickState.DONE
    bins = await engine.list_bins(WH)
    assert [(b.code, b.current_qty) for b in bins] == [("B1", 0), ("B2", 1)]
    assert bins[1].content.expiry_date == date(2026, 9, 1)

    hist = await engine.history(WH)
    assert [h.operation_type for h in hist] == [
        OperationType.PICK,
        OperationType.PICK,
        OperationType.PUTAWAY,
        OperationType.PUTAWAY,
    ]
    assert hist[0].occurred_at.tzinfo is not None

    analytics = await engine.analytics(WH)
    assert analytics["pick"]["bins_emptied"] == 1
    assert analytics["allocation"]["total_allocations"] == 2


@pytest.mark.asyncio
async def test_history_time_window(sql_store):
    engine = WarehouseBinEngine(sql_store)
    await engine.register_bins(WH, [{"code": "B1", "capacity": 10}])
    await engine.putaway(WH, [PutawayRequest("SKU001", 2)])

    future = datetime.now(timezone.utc) + timedelta(hours=1)
    assert await engine.history(WH, since=future) == []
    assert len(await engine.history(WH, until=future)) == 1


@pytest.mark.asyncio
async def test_rollback_persists_link_to_original(sql_store):
    engine = WarehouseBinEngine(sql_store, holds=BinHoldManager(timeout=0.2))
    await engine.register_bins(WH, [{"code": "B1", "capacity": 10}])
    await engine.putaway(WH, [PutawayRequest("SKU001", 6)])
    await engine.pick(WH, [PickRequestLine("SKU001", 4)])
    [pick] = await engine.history(WH, operation_type=OperationType.PICK)

    await engine.rollback(WH, pick.id)

    [rb] = await engine.history(WH, operation_type=OperationType.ROLLBACK)
    assert (rb.rollback_of, rb.delta, rb.qty_after) == (pick.id, 4, 6)
    assert (await engine.get_bin(WH, "B1")).current_qty == 6
    moves = {(m["sku"], m["bin_code"]): m for m in await engine.movements(WH)}
    assert moves[("SKU001", "B1")]["closing_qty"] == 6
