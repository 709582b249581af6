# binalloc/api/routers/putaway.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from binalloc.api.deps import get_engine
from binalloc.schemas.putaway import PutawayRequestIn, PutawayResponse
from binalloc.services.bin_engine import WarehouseBinEngine
from binalloc.services.putaway_allocator import PutawayRequest

router = APIRouter(prefix="/warehouses/{warehouse_id}/putaway", tags=["putaway"])


@router.post("", response_model=PutawayResponse)
async def putaway(
    warehouse_id: int,
    body: PutawayRequestIn,
    engine: WarehouseBinEngine = Depends(get_engine),
) -> PutawayResponse:
    """
    上架：容量不足不是错误，remaining_qty > 0 时每个计划带 error 文案。
    """
    requests = [
        PutawayRequest(
            sku=ln.sku,
            quantity=ln.quantity,
            lot_number=ln.lot_number,
            expiry_date=ln.expiry_date,
        )
        for ln in body.lines
    ]
    outcome = await engine.putaway(
        warehouse_id,
        requests,
        ref=body.ref,
        require_full=body.require_full,
        dry_run=body.dry_run,
    )
    return PutawayResponse.model_validate(outcome.to_dict())
