# binalloc/api/routers/pick.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from binalloc.api.deps import get_engine
from binalloc.api.problem import raise_problem
from binalloc.schemas.pick import AvailabilityOut, PickRequestIn, PickResponse
from binalloc.services.bin_engine import WarehouseBinEngine
from binalloc.services.pick_coordinator import PickRequestLine

router = APIRouter(prefix="/warehouses/{warehouse_id}", tags=["pick"])


@router.get("/availability", response_model=AvailabilityOut)
async def availability(
    warehouse_id: int,
    sku: str = Query(..., min_length=1),
    quantity: int = Query(..., gt=0),
    engine: WarehouseBinEngine = Depends(get_engine),
) -> AvailabilityOut:
    res = await engine.check_availability(warehouse_id, sku, quantity)
    return AvailabilityOut.model_validate(res.to_dict())


@router.post("/pick", response_model=PickResponse)
async def pick(
    warehouse_id: int,
    body: PickRequestIn,
    engine: WarehouseBinEngine = Depends(get_engine),
) -> PickResponse:
    """
    两阶段拣货：任一行不足 → 409，整单不动；details 为逐行缺口。
    """
    lines = [PickRequestLine(sku=ln.sku, quantity=ln.quantity) for ln in body.lines]
    outcome = await engine.pick(warehouse_id, lines, ref=body.ref)

    res = outcome.result
    if not res.ok:
        raise_problem(
            status_code=409,
            error_code="insufficient_stock",
            message="库存不足，拣货被整单拒绝",
            context={
                "warehouse_id": int(warehouse_id),
                "ref": outcome.ref,
                "state": res.state.value,
                "transitions": [s.value for s in res.transitions],
            },
            details=[s.to_dict() for s in res.shortfalls],
            next_actions=[{"action": "replenish", "label": "补货后重新提交"}],
        )

    return PickResponse.model_validate(outcome.to_dict())
