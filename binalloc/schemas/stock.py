# binalloc/schemas/stock.py
from __future__ import annotations

from datetime import date
from typing import List, Optional

from binalloc.schemas._base import _Base


class StockLocationOut(_Base):
    bin_code: str
    quantity: int
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    placed_seq: int
    is_mixed: bool
    status: str


class SkuStockOut(_Base):
    sku: str
    total_quantity: int
    locations: List[StockLocationOut]
