# binalloc/schemas/putaway.py
from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import Field

from binalloc.schemas._base import _Base


class PutawayLineIn(_Base):
    sku: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(..., gt=0, description="上架数量（>0）")
    lot_number: Optional[str] = Field(default=None, max_length=64)
    expiry_date: Optional[date] = None


class PutawayRequestIn(_Base):
    """
    上架请求：

    - ref 缺省由服务端生成
    - require_full 缺省取配置 PUTAWAY_REQUIRE_FULL
    - dry_run=True 只试算，不落库、不加锁
    """

    ref: Optional[str] = Field(default=None, max_length=128)
    require_full: Optional[bool] = None
    dry_run: bool = False
    lines: List[PutawayLineIn] = Field(..., min_length=1)


class AllocationLineOut(_Base):
    bin_code: str
    allocated_qty: int
    reason: str
    allocation_type: str
    is_mixed: bool
    utilization: float
    qty_before: int
    qty_after: int
    capacity: int
    pass_no: int


class AllocationSummaryOut(_Base):
    same_sku_allocations: int
    mixed_allocations: int
    mixed_bin_allocations: int
    total_bins_used: int
    average_utilization: float
    efficiency: str


class AllocationPlanOut(_Base):
    sku: str
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    requested_qty: int
    allocated_qty: int
    remaining_qty: int
    is_fully_allocated: bool
    applied: bool
    lines: List[AllocationLineOut]
    summary: AllocationSummaryOut
    error: Optional[str] = None


class PutawayResponse(_Base):
    ref: str
    dry_run: bool
    remaining_qty: int
    plans: List[AllocationPlanOut]
