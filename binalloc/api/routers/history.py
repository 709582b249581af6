# binalloc/api/routers/history.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from binalloc.api.deps import get_engine
from binalloc.models.enums import OperationType
from binalloc.schemas.history import AnalyticsOut, HistoryEntryOut, MovementRowOut, RollbackIn, RollbackOut
from binalloc.services.bin_engine import WarehouseBinEngine

router = APIRouter(prefix="/warehouses/{warehouse_id}/history", tags=["history"])


@router.get("", response_model=List[HistoryEntryOut])
async def list_history(
    warehouse_id: int,
    sku: Optional[str] = Query(None),
    bin_code: Optional[str] = Query(None),
    operation_type: Optional[OperationType] = Query(None),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    engine: WarehouseBinEngine = Depends(get_engine),
) -> List[HistoryEntryOut]:
    rows = await engine.history(
        warehouse_id,
        sku=sku,
        bin_code=bin_code,
        operation_type=operation_type,
        since=since,
        until=until,
        limit=limit,
    )
    return [HistoryEntryOut.model_validate(e.to_dict()) for e in rows]


@router.get("/movements", response_model=List[MovementRowOut])
async def movements(
    warehouse_id: int,
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    engine: WarehouseBinEngine = Depends(get_engine),
) -> List[MovementRowOut]:
    rows = await engine.movements(warehouse_id, since=since, until=until)
    return [MovementRowOut.model_validate(r) for r in rows]


@router.get("/analytics", response_model=AnalyticsOut)
async def analytics(
    warehouse_id: int,
    engine: WarehouseBinEngine = Depends(get_engine),
) -> AnalyticsOut:
    return AnalyticsOut.model_validate(await engine.analytics(warehouse_id))


@router.post("/{entry_id}/rollback", response_model=RollbackOut)
async def rollback_entry(
    warehouse_id: int,
    entry_id: int,
    body: Optional[RollbackIn] = None,
    engine: WarehouseBinEngine = Depends(get_engine),
) -> RollbackOut:
    """
    撤销一条 PUTAWAY / PICK 历史行：写反向 ROLLBACK 行，原行保留。
    放不回去 / 已撤销 → 409 rollback_rejected。
    """
    outcome = await engine.rollback(warehouse_id, entry_id, ref=body.ref if body else None)
    return RollbackOut.model_validate(outcome.to_dict())
