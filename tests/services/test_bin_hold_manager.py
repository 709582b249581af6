# tests/services/test_bin_hold_manager.py
import asyncio

import pytest

from binalloc.domain.errors import ResourceBusy
from binalloc.services.bin_locks import BinHoldManager


@pytest.mark.asyncio
async def test_hold_is_released_on_normal_exit():
    holds = BinHoldManager(timeout=0.1)
    async with holds.hold(1, ["B2", "B1"], owner="op-1") as codes:
        assert codes == ["B1", "B2"]
        assert holds.is_held(1, "B1")
        assert [h.owner for h in holds.held_bins(1)] == ["op-1", "op-1"]

    assert not holds.is_held(1, "B1")
    assert holds.held_bins(1) == []


@pytest.mark.asyncio
async def test_hold_is_released_when_body_raises():
    holds = BinHoldManager(timeout=0.1)
    with pytest.raises(RuntimeError):
        async with holds.hold(1, ["B1"], owner="op-1"):
            raise RuntimeError("boom")
    assert not holds.is_held(1, "B1")


@pytest.mark.asyncio
async def test_contended_hold_times_out_with_resource_busy():
    holds = BinHoldManager(timeout=0.05)
    async with holds.hold(1, ["B1"], owner="op-1"):
        with pytest.raises(ResourceBusy) as ei:
            async with holds.hold(1, ["B0", "B1"], owner="op-2"):
                pass  # pragma: no cover

        err = ei.value
        assert err.retryable is True
        assert err.http_status == 423
        assert err.details[0]["reason"] == "held_by:op-1"
        # 超时方已拿到的 B0 必须退回
        assert not holds.is_held(1, "B0")

    assert holds.held_bins(1) == []


@pytest.mark.asyncio
async def test_other_warehouse_is_independent():
    holds = BinHoldManager(timeout=0.05)
    async with holds.hold(1, ["B1"], owner="op-1"):
        async with holds.hold(2, ["B1"], owner="op-2"):
            assert holds.is_held(2, "B1")


@pytest.mark.asyncio
async def test_waiter_proceeds_once_holder_leaves():
    holds = BinHoldManager(timeout=1.0)
    order = []

    async def first():
        async with holds.hold(1, ["B1"], owner="first"):
            order.append("first-in")
            await asyncio.sleep(0.05)
            order.append("first-out")

    async def second():
        await asyncio.sleep(0.01)
        async with holds.hold(1, ["B1"], owner="second"):
            order.append("second-in")

    await asyncio.gather(first(), second())
    assert order == ["first-in", "first-out", "second-in"]


@pytest.mark.asyncio
async def test_force_release_frees_bins_and_old_owner_exit_is_harmless():
    holds = BinHoldManager(timeout=0.05)
    async with holds.hold(1, ["B1", "B2"], owner="stuck"):
        assert holds.force_release(1) == 2
        assert holds.held_bins(1) == []

        async with holds.hold(1, ["B1"], owner="rescuer"):
            assert holds.held_bins(1)[0].owner == "rescuer"

    assert holds.held_bins(1) == []
