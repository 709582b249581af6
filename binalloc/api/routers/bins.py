# binalloc/api/routers/bins.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status

from binalloc.api.deps import get_engine
from binalloc.schemas.bins import BinOut, BinRegisterRequest, BinSummaryOut
from binalloc.services.bin_engine import WarehouseBinEngine

router = APIRouter(prefix="/warehouses/{warehouse_id}/bins", tags=["bins"])


@router.post("", response_model=List[BinOut], status_code=status.HTTP_201_CREATED)
async def register_bins(
    warehouse_id: int,
    body: BinRegisterRequest,
    engine: WarehouseBinEngine = Depends(get_engine),
) -> List[BinOut]:
    saved = await engine.register_bins(warehouse_id, [b.to_record() for b in body.bins])
    return [BinOut.from_record(b.to_record()) for b in saved]


@router.get("", response_model=List[BinOut])
async def list_bins(
    warehouse_id: int,
    engine: WarehouseBinEngine = Depends(get_engine),
) -> List[BinOut]:
    bins = await engine.list_bins(warehouse_id)
    return [BinOut.from_record(b.to_record()) for b in bins]


@router.get("/summary", response_model=BinSummaryOut)
async def bins_summary(
    warehouse_id: int,
    engine: WarehouseBinEngine = Depends(get_engine),
) -> BinSummaryOut:
    return BinSummaryOut.model_validate(await engine.summary(warehouse_id))


@router.get("/{code}", response_model=BinOut)
async def get_bin(
    warehouse_id: int,
    code: str,
    engine: WarehouseBinEngine = Depends(get_engine),
) -> BinOut:
    b = await engine.get_bin(warehouse_id, code)
    return BinOut.from_record(b.to_record())
