# binalloc/schemas/history.py
from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import Field

from binalloc.schemas._base import _Base


class HistoryEntryOut(_Base):
    id: Optional[int] = None
    warehouse_id: int
    ref: str
    ref_line: int
    operation_type: str
    bin_code: str
    sku: str
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    delta: int
    quantity: int
    qty_before: int
    qty_after: int
    allocation_type: Optional[str] = None
    reason: Optional[str] = None
    utilization: Optional[float] = None
    is_mixed: bool
    fifo_position: Optional[int] = None
    bin_emptied: bool
    rollback_of: Optional[int] = None
    occurred_at: datetime


class RollbackIn(_Base):
    ref: Optional[str] = Field(default=None, max_length=128)


class RollbackOut(_Base):
    ref: str
    original: HistoryEntryOut
    entries: List[HistoryEntryOut]


class MovementRowOut(_Base):
    sku: str
    bin_code: str
    opening_qty: int
    inbound_qty: int
    outbound_qty: int
    closing_qty: int


class AllocationAnalyticsOut(_Base):
    total_allocations: int
    average_utilization: float
    optimal_placements: int
    optimal_placement_rate: float
    allocation_types: Dict[str, int]
    efficiency_distribution: Dict[str, int]


class PickAnalyticsOut(_Base):
    total_picks: int
    fifo_compliant_picks: int
    fifo_compliance_rate: float
    bins_emptied: int
    bin_empty_rate: float
    average_quantity_per_pick: float


class AnalyticsOut(_Base):
    warehouse_id: int
    allocation: AllocationAnalyticsOut
    pick: PickAnalyticsOut


class HoldOut(_Base):
    warehouse_id: int
    bin_code: str
    owner: str
    held_seconds: float


class HoldsOut(_Base):
    warehouse_id: int
    holds: List[HoldOut]


class ForceReleaseOut(_Base):
    warehouse_id: int
    released: int
