# binalloc/schemas/bins.py
from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import Field, model_validator

from binalloc.schemas._base import _Base


class ContentLineIn(_Base):
    sku: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(..., gt=0)
    lot_number: Optional[str] = Field(default=None, max_length=64)
    expiry_date: Optional[date] = None
    placed_seq: int = Field(default=0, ge=0)


class BinIn(_Base):
    """
    登记库位（配置侧）：

    - 空库位：只给 code / capacity（sequence 缺省按登记顺序追加）
    - 带初始内容：纯库位给 primary_sku + current_qty；混放给 contents（≥2 行）
    """

    code: str = Field(..., min_length=1, max_length=64)
    capacity: int = Field(..., gt=0)
    sequence: Optional[int] = Field(default=None, ge=0)

    current_qty: int = Field(default=0, ge=0)
    primary_sku: Optional[str] = Field(default=None, max_length=64)
    lot_number: Optional[str] = Field(default=None, max_length=64)
    expiry_date: Optional[date] = None
    placed_seq: int = Field(default=0, ge=0)
    contents: Optional[List[ContentLineIn]] = None

    @model_validator(mode="after")
    def _qty_matches_contents(self) -> "BinIn":
        if self.contents is not None:
            keys = [(ln.sku, ln.lot_number, ln.expiry_date) for ln in self.contents]
            if len(set(keys)) != len(keys):
                raise ValueError("contents 中同一 (sku, lot_number, expiry_date) 只能出现一次")
            total = sum(ln.quantity for ln in self.contents)
            if self.current_qty and self.current_qty != total:
                raise ValueError("current_qty 必须等于 contents 数量之和")
            self.current_qty = total
        elif self.current_qty > 0 and not self.primary_sku:
            raise ValueError("current_qty > 0 时必须提供 primary_sku 或 contents")
        if self.current_qty > self.capacity:
            raise ValueError("current_qty 不能超过 capacity")
        return self

    def to_record(self) -> Dict[str, Any]:
        rec = self.model_dump()
        if self.contents is not None:
            rec["contents"] = [ln.model_dump() for ln in self.contents]
        return rec


class BinRegisterRequest(_Base):
    bins: List[BinIn] = Field(..., min_length=1)


class ContentLineOut(_Base):
    sku: str
    quantity: int
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    placed_seq: int = 0


class BinOut(_Base):
    code: str
    capacity: int
    sequence: int
    current_qty: int
    status: str
    primary_sku: Optional[str] = None
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    placed_seq: Optional[int] = None
    is_mixed: bool = False
    contents: Optional[List[ContentLineOut]] = None

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "BinOut":
        return cls.model_validate(dict(rec, is_mixed=rec.get("contents") is not None))


class BinSummaryOut(_Base):
    warehouse_id: int
    total_bins: int
    empty_bins: int
    pure_bins: int
    mixed_bins: int
    total_capacity: int
    total_qty: int
    utilization: float
    qty_by_sku: Dict[str, int]
