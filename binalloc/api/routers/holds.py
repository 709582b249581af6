# binalloc/api/routers/holds.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from binalloc.api.deps import get_engine
from binalloc.schemas.history import ForceReleaseOut, HoldOut, HoldsOut
from binalloc.services.bin_engine import WarehouseBinEngine

logger = logging.getLogger("binalloc.holds")

router = APIRouter(prefix="/warehouses/{warehouse_id}/holds", tags=["holds"])


@router.get("", response_model=HoldsOut)
async def list_holds(
    warehouse_id: int,
    engine: WarehouseBinEngine = Depends(get_engine),
) -> HoldsOut:
    return HoldsOut(
        warehouse_id=warehouse_id,
        holds=[HoldOut.model_validate(h) for h in engine.held_bins(warehouse_id)],
    )


@router.delete("", response_model=ForceReleaseOut)
async def force_release(
    warehouse_id: int,
    engine: WarehouseBinEngine = Depends(get_engine),
) -> ForceReleaseOut:
    """应急：强制释放该仓全部库位持有（仅在确认持有者已失联时使用）。"""
    released = engine.force_release(warehouse_id)
    logger.warning("force release via API: wh=%s released=%s", warehouse_id, released)
    return ForceReleaseOut(warehouse_id=warehouse_id, released=released)
