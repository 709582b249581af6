# binalloc/services/operation_journal.py
from __future__ import annotations

from collections import OrderedDict, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from binalloc.domain.bin_state import Bin
from binalloc.models.enums import AllocationType, OperationType
from binalloc.services.pick_coordinator import PickResult
from binalloc.services.putaway_allocator import AllocationPlan, efficiency_rating

JsonLike = Dict[str, Any]

UTC = timezone.utc


@dataclass
class HistoryEntry:
    """
    操作历史（只增不改）：每个 put-away 分配行 / 每个 pick 扣减腿一条。

    delta 入正出负；qty_before / qty_after 为整个库位的总量，
    外部报表据此按 (sku, bin) 重建期初 / 期末。
    """

    warehouse_id: int
    ref: str
    ref_line: int
    operation_type: OperationType
    bin_code: str
    sku: str
    delta: int
    qty_before: int
    qty_after: int
    occurred_at: datetime
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    allocation_type: Optional[AllocationType] = None
    reason: Optional[str] = None
    utilization: Optional[float] = None
    is_mixed: bool = False
    fifo_position: Optional[int] = None
    bin_emptied: bool = False
    rollback_of: Optional[int] = None
    id: Optional[int] = None

    @property
    def quantity(self) -> int:
        return abs(int(self.delta))

    def to_dict(self) -> JsonLike:
        return {
            "id": self.id,
            "warehouse_id": int(self.warehouse_id),
            "ref": self.ref,
            "ref_line": int(self.ref_line),
            "operation_type": self.operation_type.value,
            "bin_code": self.bin_code,
            "sku": self.sku,
            "lot_number": self.lot_number,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "delta": int(self.delta),
            "quantity": self.quantity,
            "qty_before": int(self.qty_before),
            "qty_after": int(self.qty_after),
            "allocation_type": self.allocation_type.value if self.allocation_type else None,
            "reason": self.reason,
            "utilization": self.utilization,
            "is_mixed": bool(self.is_mixed),
            "fifo_position": self.fifo_position,
            "bin_emptied": bool(self.bin_emptied),
            "rollback_of": self.rollback_of,
            "occurred_at": self.occurred_at.isoformat(),
        }


# ---------------------------------------------------------------
# 构建：计划 / 结果 → 历史行
# ---------------------------------------------------------------
def putaway_entries(
    *,
    warehouse_id: int,
    ref: str,
    plans: Sequence[AllocationPlan],
    occurred_at: Optional[datetime] = None,
) -> List[HistoryEntry]:
    at = occurred_at or datetime.now(UTC)
    out: List[HistoryEntry] = []
    ref_line = 1
    for plan in plans:
        if not plan.applied:
            continue
        req = plan.request
        for ln in plan.lines:
            out.append(
                HistoryEntry(
                    warehouse_id=int(warehouse_id),
                    ref=ref,
                    ref_line=ref_line,
                    operation_type=OperationType.PUTAWAY,
                    bin_code=ln.bin_code,
                    sku=req.sku,
                    lot_number=req.lot_number,
                    expiry_date=req.expiry_date,
                    delta=int(ln.allocated_qty),
                    qty_before=ln.qty_before,
                    qty_after=ln.qty_after,
                    allocation_type=ln.allocation_type,
                    reason=ln.reason,
                    utilization=ln.utilization,
                    is_mixed=ln.is_mixed,
                    occurred_at=at,
                )
            )
            ref_line += 1
    return out


def pick_entries(
    *,
    warehouse_id: int,
    ref: str,
    result: PickResult,
    occurred_at: Optional[datetime] = None,
) -> List[HistoryEntry]:
    at = occurred_at or datetime.now(UTC)
    out: List[HistoryEntry] = []
    ref_line = 1
    for line in result.lines:
        for lg in line.execution.legs:
            out.append(
                HistoryEntry(
                    warehouse_id=int(warehouse_id),
                    ref=ref,
                    ref_line=ref_line,
                    operation_type=OperationType.PICK,
                    bin_code=lg.bin_code,
                    sku=lg.sku,
                    lot_number=lg.lot_number,
                    expiry_date=lg.expiry_date,
                    delta=-int(lg.qty),
                    qty_before=lg.qty_before,
                    qty_after=lg.qty_after,
                    is_mixed=lg.was_mixed,
                    fifo_position=lg.fifo_position,
                    bin_emptied=lg.bin_emptied,
                    occurred_at=at,
                )
            )
            ref_line += 1
    return out


def rollback_entries(
    *,
    original: HistoryEntry,
    ref: str,
    moves: Sequence[Tuple[Bin, int, int, str]],
    occurred_at: Optional[datetime] = None,
) -> List[HistoryEntry]:
    """
    撤销行：moves 为 (变更后的库位, delta, qty_before, reason)。

    delta 方向与原行相反，数量之和等于原行数量。
    """
    at = occurred_at or datetime.now(UTC)
    out: List[HistoryEntry] = []
    for ref_line, (b, delta, before, reason) in enumerate(moves, start=1):
        out.append(
            HistoryEntry(
                warehouse_id=int(original.warehouse_id),
                ref=ref,
                ref_line=ref_line,
                operation_type=OperationType.ROLLBACK,
                bin_code=b.code,
                sku=original.sku,
                lot_number=original.lot_number,
                expiry_date=original.expiry_date,
                delta=int(delta),
                qty_before=int(before),
                qty_after=b.current_qty,
                reason=reason,
                utilization=round(b.current_qty / int(b.capacity) * 100.0, 1),
                is_mixed=b.is_mixed,
                bin_emptied=b.is_empty,
                rollback_of=original.id,
                occurred_at=at,
            )
        )
    return out


def filter_entries(
    entries: Iterable[HistoryEntry],
    *,
    sku: Optional[str] = None,
    bin_code: Optional[str] = None,
    operation_type: Optional[OperationType] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> List[HistoryEntry]:
    out = []
    for e in entries:
        if sku and e.sku != sku:
            continue
        if bin_code and e.bin_code != bin_code:
            continue
        if operation_type and e.operation_type != operation_type:
            continue
        if since and e.occurred_at < since:
            continue
        if until and e.occurred_at > until:
            continue
        out.append(e)
    return out


# ---------------------------------------------------------------
# 报表口径：按 (sku, bin) 重建 期初 / 入 / 出 / 期末
# ---------------------------------------------------------------
def movement_summary(
    entries: Sequence[HistoryEntry],
    *,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
) -> List[JsonLike]:
    """
    entries 必须是完整历史（期初 = since 之前全部 delta 之和）。
    """
    acc: "OrderedDict[Tuple[str, str], Dict[str, int]]" = OrderedDict()

    for e in sorted(entries, key=lambda x: (x.occurred_at, x.id or 0)):
        if until and e.occurred_at > until:
            continue
        key = (e.sku, e.bin_code)
        row = acc.setdefault(key, {"opening": 0, "inbound": 0, "outbound": 0})
        if since and e.occurred_at < since:
            row["opening"] += int(e.delta)
        elif e.delta > 0:
            row["inbound"] += int(e.delta)
        else:
            row["outbound"] += -int(e.delta)

    out: List[JsonLike] = []
    for (sku, code), row in sorted(acc.items()):
        closing = row["opening"] + row["inbound"] - row["outbound"]
        out.append(
            {
                "sku": sku,
                "bin_code": code,
                "opening_qty": row["opening"],
                "inbound_qty": row["inbound"],
                "outbound_qty": row["outbound"],
                "closing_qty": closing,
            }
        )
    return out


# ---------------------------------------------------------------
# 分析：上架 / 拣货
# ---------------------------------------------------------------
def allocation_analytics(entries: Sequence[HistoryEntry]) -> JsonLike:
    rows = [e for e in entries if e.operation_type == OperationType.PUTAWAY]
    if not rows:
        return {
            "total_allocations": 0,
            "average_utilization": 0.0,
            "optimal_placements": 0,
            "optimal_placement_rate": 0.0,
            "allocation_types": {},
            "efficiency_distribution": {},
        }

    total = len(rows)
    optimal = sum(1 for e in rows if e.allocation_type != AllocationType.MIXED_SKU_STORAGE)
    avg = round(sum(float(e.utilization or 0.0) for e in rows) / total, 1)

    types: Dict[str, int] = defaultdict(int)
    dist: Dict[str, int] = defaultdict(int)
    for e in rows:
        types[e.allocation_type.value if e.allocation_type else "UNKNOWN"] += 1
        dist[efficiency_rating(float(e.utilization or 0.0)).value] += 1

    return {
        "total_allocations": total,
        "average_utilization": avg,
        "optimal_placements": optimal,
        "optimal_placement_rate": round(optimal / total * 100.0, 1),
        "allocation_types": dict(types),
        "efficiency_distribution": dict(dist),
    }


def pick_analytics(entries: Sequence[HistoryEntry]) -> JsonLike:
    rows = [e for e in entries if e.operation_type == OperationType.PICK]
    if not rows:
        return {
            "total_picks": 0,
            "fifo_compliant_picks": 0,
            "fifo_compliance_rate": 0.0,
            "bins_emptied": 0,
            "bin_empty_rate": 0.0,
            "average_quantity_per_pick": 0.0,
        }

    # FIFO 合规：同一单同一 SKU 的扣减腿，fifo_position 必须单调不减
    by_ref_sku: Dict[Tuple[str, str], List[HistoryEntry]] = defaultdict(list)
    for e in rows:
        by_ref_sku[(e.ref, e.sku)].append(e)
    compliant = 0
    for legs in by_ref_sku.values():
        legs = sorted(legs, key=lambda x: x.ref_line)
        pos = [int(x.fifo_position or 0) for x in legs]
        if pos == sorted(pos):
            compliant += len(legs)

    total = len(rows)
    emptied = sum(1 for e in rows if e.bin_emptied)
    return {
        "total_picks": total,
        "fifo_compliant_picks": compliant,
        "fifo_compliance_rate": round(compliant / total * 100.0, 1),
        "bins_emptied": emptied,
        "bin_empty_rate": round(emptied / total * 100.0, 1),
        "average_quantity_per_pick": round(sum(e.quantity for e in rows) / total, 1),
    }
