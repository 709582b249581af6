# binalloc/services/putaway_allocator.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from binalloc.domain.bin_state import Bin, ContentLine, SlotKey, check_invariants
from binalloc.models.enums import AllocationType, EfficiencyRating

logger = logging.getLogger("binalloc.putaway")

JsonLike = Dict[str, Any]


@dataclass(frozen=True)
class PutawayRequest:
    sku: str
    quantity: int
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None

    @property
    def slot_key(self) -> SlotKey:
        return (self.sku, self.lot_number, self.expiry_date)

    def validate(self) -> None:
        if not self.sku or not str(self.sku).strip():
            raise ValueError("putaway 请求必须提供 sku")
        if int(self.quantity) <= 0:
            raise ValueError("putaway quantity must be > 0")


@dataclass
class AllocationLine:
    bin_code: str
    allocated_qty: int
    reason: str
    allocation_type: AllocationType
    is_mixed: bool
    utilization: float
    qty_before: int
    qty_after: int
    capacity: int
    pass_no: int

    def to_dict(self) -> JsonLike:
        return {
            "bin_code": self.bin_code,
            "allocated_qty": int(self.allocated_qty),
            "reason": self.reason,
            "allocation_type": self.allocation_type.value,
            "is_mixed": bool(self.is_mixed),
            "utilization": float(self.utilization),
            "qty_before": int(self.qty_before),
            "qty_after": int(self.qty_after),
            "capacity": int(self.capacity),
            "pass_no": int(self.pass_no),
        }


@dataclass
class AllocationPlan:
    request: PutawayRequest
    placed_seq: int
    lines: List[AllocationLine] = field(default_factory=list)
    applied: bool = True

    @property
    def allocated_qty(self) -> int:
        return sum(ln.allocated_qty for ln in self.lines)

    @property
    def remaining_qty(self) -> int:
        return int(self.request.quantity) - self.allocated_qty

    @property
    def is_fully_allocated(self) -> bool:
        return self.remaining_qty == 0

    def summary(self) -> JsonLike:
        avg = (
            round(sum(ln.utilization for ln in self.lines) / len(self.lines), 1)
            if self.lines
            else 0.0
        )
        return {
            "same_sku_allocations": sum(1 for ln in self.lines if ln.pass_no == 1),
            "mixed_allocations": sum(1 for ln in self.lines if ln.pass_no == 2),
            "mixed_bin_allocations": sum(1 for ln in self.lines if ln.is_mixed),
            "total_bins_used": len(self.lines),
            "average_utilization": avg,
            "efficiency": efficiency_rating(avg).value,
        }

    def to_dict(self) -> JsonLike:
        out: JsonLike = {
            "sku": self.request.sku,
            "lot_number": self.request.lot_number,
            "expiry_date": self.request.expiry_date.isoformat() if self.request.expiry_date else None,
            "requested_qty": int(self.request.quantity),
            "allocated_qty": self.allocated_qty,
            "remaining_qty": self.remaining_qty,
            "is_fully_allocated": self.is_fully_allocated,
            "applied": bool(self.applied),
            "lines": [ln.to_dict() for ln in self.lines],
            "summary": self.summary(),
        }
        if self.remaining_qty > 0:
            out["error"] = f"Could not allocate {self.remaining_qty} units - no available bins with sufficient capacity"
        return out


def efficiency_rating(utilization_percent: float) -> EfficiencyRating:
    if utilization_percent >= 90:
        return EfficiencyRating.EXCELLENT
    if utilization_percent >= 70:
        return EfficiencyRating.GOOD
    if utilization_percent >= 50:
        return EfficiencyRating.FAIR
    return EfficiencyRating.POOR


def _utilization(qty: int, capacity: int) -> float:
    return round(qty / capacity * 100.0, 1) if capacity else 0.0


class PutawayAllocator:
    """
    上架分配器（两遍扫描，按配置顺序）：

    ------------------------------------------
    • Pass 1 合并：已经存放同 (sku, lot, expiry) 的库位，按顺序填满剩余容量
    • Pass 2 首次适配：任何仍有剩余容量的库位（含空库位），按顺序填满
        - 空库位 → 纯库位
        - 已有其它内容 → 混放
    • 每一行分配立即落到 Bin 上，后续决策能看到前面的效果
    • 容量不足是业务结果（remaining_qty > 0），不是异常
    ------------------------------------------

    贪心、不回滚：分配到一半发现容量不够，前面已分配的行保持生效。
    需要“要么全上、要么不动”时传 require_full=True。
    """

    def allocate(
        self,
        bins: Sequence[Bin],
        req: PutawayRequest,
        *,
        placed_seq: int,
        require_full: bool = False,
    ) -> AllocationPlan:
        req.validate()

        if require_full:
            trial = self.preview(bins, req, placed_seq=placed_seq)
            if not trial.is_fully_allocated:
                trial.applied = False
                logger.info(
                    "putaway rejected (require_full): sku=%s need=%s allocatable=%s",
                    req.sku,
                    req.quantity,
                    trial.allocated_qty,
                )
                return trial

        plan = AllocationPlan(request=req, placed_seq=int(placed_seq))
        ordered = sorted(bins, key=lambda b: b.sequence)
        remaining = int(req.quantity)

        # Pass 1：同槽位合并
        for b in ordered:
            if remaining <= 0:
                break
            if not b.holds_slot(req.slot_key) or b.free_capacity <= 0:
                continue
            take = min(remaining, b.free_capacity)
            plan.lines.append(self._apply(b, req, take, placed_seq=placed_seq, pass_no=1))
            remaining -= take

        # Pass 2：首次适配（允许混放）
        for b in ordered:
            if remaining <= 0:
                break
            if b.free_capacity <= 0:
                continue
            take = min(remaining, b.free_capacity)
            plan.lines.append(self._apply(b, req, take, placed_seq=placed_seq, pass_no=2))
            remaining -= take

        if remaining > 0:
            logger.warning(
                "putaway shortfall: sku=%s lot=%s need=%s allocated=%s remaining=%s",
                req.sku,
                req.lot_number,
                req.quantity,
                plan.allocated_qty,
                remaining,
            )
        return plan

    def preview(self, bins: Sequence[Bin], req: PutawayRequest, *, placed_seq: int) -> AllocationPlan:
        """只读试算：在副本上跑一遍分配，原库位不动。"""
        plan = self.allocate([b.clone() for b in bins], req, placed_seq=placed_seq)
        plan.applied = False
        return plan

    # ---------------------------------------------------------------
    # 单行落地：先判类型，再 put（put 内部先校验容量），最后后置校验
    # ---------------------------------------------------------------
    @staticmethod
    def _apply(b: Bin, req: PutawayRequest, take: int, *, placed_seq: int, pass_no: int) -> AllocationLine:
        before = b.current_qty
        prior_sku = b.primary_sku

        if b.is_empty:
            atype = AllocationType.NEW_PLACEMENT
            reason = f"New placement in empty bin - {take} units"
        elif b.holds_slot(req.slot_key) and not b.is_mixed:
            atype = AllocationType.SAME_SKU_CONSOLIDATION
            reason = f"Same SKU consolidation - Adding {take} units to existing {before} units"
        elif b.holds_slot(req.slot_key):
            atype = AllocationType.SAME_SKU_CONSOLIDATION
            reason = f"Same SKU consolidation - Adding {take} units of {req.sku} to mixed bin"
        else:
            atype = AllocationType.MIXED_SKU_STORAGE
            reason = f"Mixed storage - Adding {take} units of {req.sku} to bin with {prior_sku}"

        b.put(
            ContentLine(
                sku=req.sku,
                quantity=take,
                lot_number=req.lot_number,
                expiry_date=req.expiry_date,
                placed_seq=int(placed_seq),
            )
        )
        check_invariants(b)

        after = b.current_qty
        logger.debug(
            "putaway pass%s: bin=%s sku=%s %s+%s=%s (%s)",
            pass_no,
            b.code,
            req.sku,
            before,
            take,
            after,
            atype.value,
        )
        return AllocationLine(
            bin_code=b.code,
            allocated_qty=int(take),
            reason=reason,
            allocation_type=atype,
            is_mixed=b.is_mixed,
            utilization=_utilization(after, int(b.capacity)),
            qty_before=before,
            qty_after=after,
            capacity=int(b.capacity),
            pass_no=pass_no,
        )
