# binalloc/schemas/pick.py
from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import Field

from binalloc.schemas._base import _Base


class PickLineIn(_Base):
    sku: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(..., gt=0, description="拣货数量（>0）")


class PickRequestIn(_Base):
    ref: Optional[str] = Field(default=None, max_length=128)
    lines: List[PickLineIn] = Field(..., min_length=1)


class PickCandidateOut(_Base):
    bin_code: str
    sku: str
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    available_qty: int
    placed_seq: int
    is_mixed: bool
    fifo_position: int
    fifo_reason: str


class AvailabilityOut(_Base):
    sku: str
    requested_qty: int
    total_available: int
    is_fully_available: bool
    shortfall: int
    candidates: List[PickCandidateOut]


class PickLegOut(_Base):
    bin_code: str
    sku: str
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    qty: int
    fifo_position: int
    qty_before: int
    qty_after: int
    was_mixed: bool
    collapsed: bool
    bin_emptied: bool


class PickLineOut(_Base):
    line_index: int
    sku: str
    requested_qty: int
    picked_qty: int
    legs: List[PickLegOut]


class PickResponse(_Base):
    ref: str
    state: str
    transitions: List[str]
    lines: List[PickLineOut]
    availability: List[AvailabilityOut]
