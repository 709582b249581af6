# binalloc/services/stock_search.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from binalloc.domain.bin_state import Bin
from binalloc.models.enums import BinStatus

JsonLike = Dict[str, Any]


@dataclass(frozen=True)
class StockLocation:
    bin_code: str
    quantity: int
    lot_number: Optional[str]
    expiry_date: Optional[date]
    placed_seq: int
    bin_sequence: int
    is_mixed: bool
    status: BinStatus

    def to_dict(self) -> JsonLike:
        return {
            "bin_code": self.bin_code,
            "quantity": int(self.quantity),
            "lot_number": self.lot_number,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "placed_seq": int(self.placed_seq),
            "is_mixed": bool(self.is_mixed),
            "status": self.status.value,
        }


@dataclass
class SkuStock:
    sku: str
    locations: List[StockLocation] = field(default_factory=list)

    @property
    def total_quantity(self) -> int:
        return sum(loc.quantity for loc in self.locations)

    def to_dict(self) -> JsonLike:
        return {
            "sku": self.sku,
            "total_quantity": self.total_quantity,
            "locations": [loc.to_dict() for loc in self.locations],
        }


def _fifo_key(loc: StockLocation):
    return (
        loc.expiry_date is None,
        loc.expiry_date or date.max,
        loc.placed_seq,
        loc.bin_sequence,
        loc.bin_code,
    )


def search_stock(
    bins: Sequence[Bin],
    term: Optional[str] = None,
    *,
    status: Optional[BinStatus] = None,
    min_quantity: Optional[int] = None,
) -> List[SkuStock]:
    """
    库存检索（只读）：

    - term：不区分大小写的子串，命中 sku / 库位编码 / 批次 任一即可；空 = 全部
    - status：按库位占用状态过滤
    - min_quantity：按单个存放位置（库位内的一个槽位）的数量过滤
    - 结果按 sku 归组，组内按 FIFO 顺序（先到期、先上架）列出位置
    """
    needle = (term or "").strip().lower()
    grouped: Dict[str, SkuStock] = {}

    for b in bins:
        if status is not None and b.status != status:
            continue
        code_hit = bool(needle) and needle in b.code.lower()
        for ln in b.lines:
            if needle and not (
                code_hit or needle in ln.sku.lower() or needle in (ln.lot_number or "").lower()
            ):
                continue
            if min_quantity is not None and ln.quantity < int(min_quantity):
                continue
            grouped.setdefault(ln.sku, SkuStock(sku=ln.sku)).locations.append(
                StockLocation(
                    bin_code=b.code,
                    quantity=ln.quantity,
                    lot_number=ln.lot_number,
                    expiry_date=ln.expiry_date,
                    placed_seq=ln.placed_seq,
                    bin_sequence=int(b.sequence),
                    is_mixed=b.is_mixed,
                    status=b.status,
                )
            )

    out = [grouped[sku] for sku in sorted(grouped)]
    for item in out:
        item.locations.sort(key=_fifo_key)
    return out
