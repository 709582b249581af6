# binalloc/services/availability_resolver.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from binalloc.domain.bin_state import Bin, SlotKey, available_for_sku, slots_for_sku

JsonLike = Dict[str, Any]


@dataclass(frozen=True)
class PickCandidate:
    """一个可拣槽位：(bin, lot, expiry) + 该槽位对 sku 的可用量。"""

    bin_code: str
    sku: str
    lot_number: Optional[str]
    expiry_date: Optional[date]
    available_qty: int
    placed_seq: int
    bin_sequence: int
    is_mixed: bool
    fifo_position: int = 0

    @property
    def slot_key(self) -> SlotKey:
        return (self.sku, self.lot_number, self.expiry_date)

    def fifo_reason(self) -> str:
        parts: List[str] = []
        if self.expiry_date:
            parts.append(f"Expires {self.expiry_date.isoformat()}")
        if self.lot_number:
            parts.append(f"Lot: {self.lot_number}")
        parts.append(f"Put-away seq {self.placed_seq}")
        if self.is_mixed:
            parts.append("Mixed bin")
        return ", ".join(parts)

    def to_dict(self) -> JsonLike:
        return {
            "bin_code": self.bin_code,
            "sku": self.sku,
            "lot_number": self.lot_number,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "available_qty": int(self.available_qty),
            "placed_seq": int(self.placed_seq),
            "is_mixed": bool(self.is_mixed),
            "fifo_position": int(self.fifo_position),
            "fifo_reason": self.fifo_reason(),
        }


@dataclass
class AvailabilityResult:
    sku: str
    requested_qty: int
    candidates: List[PickCandidate] = field(default_factory=list)

    @property
    def total_available(self) -> int:
        return sum(c.available_qty for c in self.candidates)

    @property
    def is_fully_available(self) -> bool:
        return self.total_available >= int(self.requested_qty)

    @property
    def shortfall(self) -> int:
        return max(0, int(self.requested_qty) - self.total_available)

    @property
    def bin_codes(self) -> List[str]:
        seen: List[str] = []
        for c in self.candidates:
            if c.bin_code not in seen:
                seen.append(c.bin_code)
        return seen

    def planned_takes(self) -> List[tuple[PickCandidate, int]]:
        """按 FIFO 贪心切片，得到 Phase 1 承诺的每个槽位扣减量。"""
        remaining = int(self.requested_qty)
        out: List[tuple[PickCandidate, int]] = []
        for c in self.candidates:
            if remaining <= 0:
                break
            take = min(remaining, c.available_qty)
            if take > 0:
                out.append((c, take))
                remaining -= take
        return out

    def to_dict(self) -> JsonLike:
        return {
            "sku": self.sku,
            "requested_qty": int(self.requested_qty),
            "total_available": self.total_available,
            "is_fully_available": self.is_fully_available,
            "shortfall": self.shortfall,
            "candidates": [c.to_dict() for c in self.candidates],
        }


def fifo_sort_key(c: PickCandidate):
    # expiry ASC（无 expiry 排最后）→ 上架序号 ASC → 库位顺序 → code
    return (c.expiry_date is None, c.expiry_date or date.max, c.placed_seq, c.bin_sequence, c.bin_code)


class AvailabilityResolver:
    """
    可用量解析（只读，零副作用）。

    与 PickExecutor 共用 bin_state.available_for_sku / slots_for_sku：
    规划看到的量 == 执行扣到的量。混放库位绝不读 primary_hint。
    """

    def resolve(self, bins: Sequence[Bin], sku: str, requested_qty: int) -> AvailabilityResult:
        if not sku or not str(sku).strip():
            raise ValueError("pick 请求必须提供 sku")
        if int(requested_qty) <= 0:
            raise ValueError("requested quantity must be > 0")

        cands: List[PickCandidate] = []
        seen = set()
        for b in bins:
            if b.code in seen:
                continue
            seen.add(b.code)
            if available_for_sku(b.content, sku) <= 0:
                continue
            for ln in slots_for_sku(b.content, sku):
                cands.append(
                    PickCandidate(
                        bin_code=b.code,
                        sku=sku,
                        lot_number=ln.lot_number,
                        expiry_date=ln.expiry_date,
                        available_qty=ln.quantity,
                        placed_seq=ln.placed_seq,
                        bin_sequence=b.sequence,
                        is_mixed=b.is_mixed,
                    )
                )

        cands.sort(key=fifo_sort_key)
        ranked = [replace(c, fifo_position=i) for i, c in enumerate(cands, start=1)]
        return AvailabilityResult(sku=sku, requested_qty=int(requested_qty), candidates=ranked)

    def available_in_bin(self, b: Bin, sku: str) -> int:
        return available_for_sku(b.content, sku)
