# binalloc/api/routers/stock.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from binalloc.api.deps import get_engine
from binalloc.models.enums import BinStatus
from binalloc.schemas.stock import SkuStockOut
from binalloc.services.bin_engine import WarehouseBinEngine

router = APIRouter(prefix="/warehouses/{warehouse_id}/stock", tags=["stock"])


@router.get("/search", response_model=List[SkuStockOut])
async def search_stock(
    warehouse_id: int,
    q: Optional[str] = Query(None, max_length=64, description="sku / 库位编码 / 批次 子串"),
    status: Optional[BinStatus] = Query(None),
    min_quantity: Optional[int] = Query(None, ge=1),
    engine: WarehouseBinEngine = Depends(get_engine),
) -> List[SkuStockOut]:
    found = await engine.search_stock(warehouse_id, q, status=status, min_quantity=min_quantity)
    return [SkuStockOut.model_validate(s.to_dict()) for s in found]
