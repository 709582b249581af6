# binalloc/services/bin_engine.py
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from binalloc.domain.bin_state import Bin, ContentLine, max_placed_seq
from binalloc.domain.errors import (
    BinNotFound,
    HistoryEntryNotFound,
    InvariantViolation,
    PickConsistencyFault,
    RollbackRejected,
)
from binalloc.models.enums import BinStatus, OperationType
from binalloc.obs.metrics import (
    engine_faults_total,
    pick_total,
    putaway_lines_total,
    putaway_unallocated_qty_total,
    rollback_total,
)
from binalloc.services.availability_resolver import AvailabilityResult
from binalloc.services.bin_locks import BinHoldManager
from binalloc.services.bin_store import BinStore
from binalloc.services.operation_journal import (
    HistoryEntry,
    allocation_analytics,
    movement_summary,
    pick_analytics,
    pick_entries,
    putaway_entries,
    rollback_entries,
)
from binalloc.services.pick_coordinator import PickCoordinator, PickRequestLine, PickResult
from binalloc.services.putaway_allocator import AllocationPlan, PutawayAllocator, PutawayRequest
from binalloc.services.stock_search import SkuStock, search_stock

logger = logging.getLogger("binalloc.engine")

JsonLike = Dict[str, Any]


@dataclass
class PutawayOutcome:
    ref: str
    plans: List[AllocationPlan] = field(default_factory=list)
    dry_run: bool = False
    history: List[HistoryEntry] = field(default_factory=list)

    @property
    def remaining_qty(self) -> int:
        return sum(p.remaining_qty for p in self.plans)

    def to_dict(self) -> JsonLike:
        return {
            "ref": self.ref,
            "dry_run": bool(self.dry_run),
            "remaining_qty": self.remaining_qty,
            "plans": [p.to_dict() for p in self.plans],
        }


@dataclass
class PickOutcome:
    ref: str
    result: PickResult
    history: List[HistoryEntry] = field(default_factory=list)

    def to_dict(self) -> JsonLike:
        out = {"ref": self.ref}
        out.update(self.result.to_dict())
        return out


@dataclass
class RollbackOutcome:
    ref: str
    original: HistoryEntry
    history: List[HistoryEntry] = field(default_factory=list)

    def to_dict(self) -> JsonLike:
        return {
            "ref": self.ref,
            "original": self.original.to_dict(),
            "entries": [e.to_dict() for e in self.history],
        }


def _utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _owner(ref: str) -> str:
    # 同一 ref 并发提交时持有者仍需可区分
    return f"{ref}#{uuid.uuid4().hex[:6]}"


class WarehouseBinEngine:
    """
    仓内库位引擎（门面）：

    - 读：store.load_bins → Bin 聚合
    - 写：先拿 BinHoldManager 独占，再在持有集合内重读 / 规划 / 执行，
          最后 store.save_bins（库位 + 历史同一次提交）
    - 提交一旦开始不受取消影响：要么落库完成，要么抛错
    """

    def __init__(
        self,
        store: BinStore,
        *,
        holds: Optional[BinHoldManager] = None,
        allocator: Optional[PutawayAllocator] = None,
        coordinator: Optional[PickCoordinator] = None,
        require_full: bool = False,
    ) -> None:
        self.store = store
        self.holds = holds or BinHoldManager()
        self.allocator = allocator or PutawayAllocator()
        self.coordinator = coordinator or PickCoordinator()
        self.require_full = bool(require_full)
        self._seq: Dict[int, int] = {}

    # ---------------------------------------------------------------
    # 库位登记 / 查询
    # ---------------------------------------------------------------
    async def register_bins(self, warehouse_id: int, specs: Sequence[Mapping[str, Any]]) -> List[Bin]:
        if not specs:
            raise ValueError("至少登记一个库位")
        existing = await self.store.load_bins(warehouse_id)
        next_seq = max((b.sequence for b in existing), default=0) + 1

        bins: List[Bin] = []
        for spec in specs:
            rec = dict(spec)
            if not rec.get("code"):
                raise ValueError("库位必须提供 code")
            if int(rec.get("capacity") or 0) <= 0:
                raise ValueError(f"库位 {rec['code']} 容量必须 > 0")
            if rec.get("sequence") is None:
                rec["sequence"] = next_seq
                next_seq += 1
            rec.setdefault("current_qty", 0)
            try:
                bins.append(Bin.from_record(rec))
            except InvariantViolation as e:
                # 登记入参不合法属于调用方错误；载入路径上的同类错误仍是内部故障
                raise ValueError(f"库位 {rec['code']} 初始内容不合法：{e.message}") from e

        saved = await self.store.register_bins(warehouse_id, bins)
        logger.info("bins registered: wh=%s codes=%s", warehouse_id, [b.code for b in saved])
        return saved

    async def list_bins(self, warehouse_id: int) -> List[Bin]:
        return await self.store.load_bins(warehouse_id)

    async def get_bin(self, warehouse_id: int, code: str) -> Bin:
        found = await self.store.load_bins(warehouse_id, [code])
        if not found:
            raise BinNotFound(f"库位 {code} 不存在", context={"warehouse_id": int(warehouse_id), "bin_code": code})
        return found[0]

    async def summary(self, warehouse_id: int) -> JsonLike:
        bins = await self.store.load_bins(warehouse_id)
        capacity = sum(int(b.capacity) for b in bins)
        qty = sum(b.current_qty for b in bins)
        by_sku: Dict[str, int] = {}
        for b in bins:
            for ln in b.lines:
                by_sku[ln.sku] = by_sku.get(ln.sku, 0) + ln.quantity
        return {
            "warehouse_id": int(warehouse_id),
            "total_bins": len(bins),
            "empty_bins": sum(1 for b in bins if b.is_empty),
            "pure_bins": sum(1 for b in bins if not b.is_empty and not b.is_mixed),
            "mixed_bins": sum(1 for b in bins if b.is_mixed),
            "total_capacity": capacity,
            "total_qty": qty,
            "utilization": round(qty / capacity * 100.0, 1) if capacity else 0.0,
            "qty_by_sku": dict(sorted(by_sku.items())),
        }

    # ---------------------------------------------------------------
    # 上架
    # ---------------------------------------------------------------
    async def putaway(
        self,
        warehouse_id: int,
        requests: Sequence[PutawayRequest],
        *,
        ref: Optional[str] = None,
        require_full: Optional[bool] = None,
        dry_run: bool = False,
    ) -> PutawayOutcome:
        if not requests:
            raise ValueError("putaway 请求至少包含一行")
        for req in requests:
            req.validate()

        ref = ref or f"PUTAWAY-{uuid.uuid4().hex[:12]}"
        full = self.require_full if require_full is None else bool(require_full)
        outcome = PutawayOutcome(ref=ref, dry_run=bool(dry_run))

        everything = await self.store.load_bins(warehouse_id)
        self._bump_seq(warehouse_id, everything)

        if dry_run:
            seq = self._seq[int(warehouse_id)]
            for req in requests:
                seq += 1
                plan = self.allocator.allocate(everything, req, placed_seq=seq, require_full=full)
                plan.applied = False
                outcome.plans.append(plan)
            return outcome

        # 可能被改动的库位 = 仍有剩余容量的库位
        candidates = [b.code for b in everything if b.free_capacity > 0]

        async with self.holds.hold(warehouse_id, candidates, owner=_owner(ref)):
            bins = await self.store.load_bins(warehouse_id, candidates)
            try:
                for req in requests:
                    plan = self.allocator.allocate(
                        bins,
                        req,
                        placed_seq=self._next_seq(warehouse_id),
                        require_full=full,
                    )
                    outcome.plans.append(plan)
            except InvariantViolation as e:
                engine_faults_total.labels(e.error_code).inc()
                raise

            touched = {ln.bin_code for p in outcome.plans if p.applied for ln in p.lines}
            if touched:
                history = putaway_entries(warehouse_id=warehouse_id, ref=ref, plans=outcome.plans)
                changed = [b for b in bins if b.code in touched]
                outcome.history = await self._commit(warehouse_id, changed, history)

        for p in outcome.plans:
            if not p.applied:
                continue
            for ln in p.lines:
                putaway_lines_total.labels(ln.allocation_type.value).inc()
            if p.remaining_qty > 0:
                putaway_unallocated_qty_total.inc(p.remaining_qty)

        logger.info(
            "putaway done: wh=%s ref=%s lines=%s remaining=%s",
            warehouse_id,
            ref,
            sum(len(p.lines) for p in outcome.plans if p.applied),
            outcome.remaining_qty,
        )
        return outcome

    # ---------------------------------------------------------------
    # 可用量 / 拣货
    # ---------------------------------------------------------------
    async def check_availability(self, warehouse_id: int, sku: str, quantity: int) -> AvailabilityResult:
        bins = await self.store.load_bins(warehouse_id)
        return self.coordinator.resolver.resolve(bins, sku, quantity)

    async def pick(
        self,
        warehouse_id: int,
        lines: Sequence[PickRequestLine],
        *,
        ref: Optional[str] = None,
    ) -> PickOutcome:
        if not lines:
            raise ValueError("pick 请求至少包含一行")
        for ln in lines:
            ln.validate()

        ref = ref or f"PICK-{uuid.uuid4().hex[:12]}"

        # 预发现：先确定要持有哪些库位（持有后会重新读取并重新检查）
        everything = await self.store.load_bins(warehouse_id)
        codes: List[str] = []
        for sku in {ln.sku for ln in lines}:
            res = self.coordinator.resolver.resolve(everything, sku, 1)
            codes.extend(res.bin_codes)

        async with self.holds.hold(warehouse_id, codes, owner=_owner(ref)) as held:
            # held 已去重排序：同一混放库位可能同时是多个 SKU 的候选
            bins = await self.store.load_bins(warehouse_id, held)
            try:
                result = self.coordinator.run(bins, lines)
            except (InvariantViolation, PickConsistencyFault) as e:
                engine_faults_total.labels(e.error_code).inc()
                raise
            pick_total.labels(result.state.value).inc()
            outcome = PickOutcome(ref=ref, result=result)
            if not result.ok:
                return outcome

            history = pick_entries(warehouse_id=warehouse_id, ref=ref, result=result)
            changed = [result.bins_after[c] for c in result.touched_bins]
            outcome.history = await self._commit(warehouse_id, changed, history)

        logger.info("pick done: wh=%s ref=%s bins=%s", warehouse_id, ref, result.touched_bins)
        return outcome

    # ---------------------------------------------------------------
    # 历史 / 分析
    # ---------------------------------------------------------------
    async def history(
        self,
        warehouse_id: int,
        *,
        sku: Optional[str] = None,
        bin_code: Optional[str] = None,
        operation_type: Optional[OperationType] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[HistoryEntry]:
        rows = await self.store.list_history(
            warehouse_id,
            sku=sku,
            bin_code=bin_code,
            operation_type=operation_type,
            since=_utc(since),
            until=_utc(until),
        )
        # 最新在前
        return list(reversed(rows))[: max(0, int(limit))]

    async def movements(
        self,
        warehouse_id: int,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[JsonLike]:
        rows = await self.store.list_history(warehouse_id)
        return movement_summary(rows, since=_utc(since), until=_utc(until))

    async def analytics(self, warehouse_id: int) -> JsonLike:
        rows = await self.store.list_history(warehouse_id)
        return {
            "warehouse_id": int(warehouse_id),
            "allocation": allocation_analytics(rows),
            "pick": pick_analytics(rows),
        }

    # ---------------------------------------------------------------
    # 撤销 / 检索
    # ---------------------------------------------------------------
    async def rollback(self, warehouse_id: int, entry_id: int, *, ref: Optional[str] = None) -> RollbackOutcome:
        """
        撤销一条历史行（反向作业，原行不改）：

        - PUTAWAY：从原库位扣回；该槽位现存量不足（已被拣走）→ RollbackRejected
        - PICK   ：优先放回原库位；原库位放不下则按上架规则整体分配，仍放不下 → RollbackRejected
        - ROLLBACK 行本身不可撤销；同一行只能撤销一次
        """
        ref = ref or f"ROLLBACK-{uuid.uuid4().hex[:12]}"
        original = await self._history_entry(warehouse_id, entry_id)
        op = original.operation_type
        if op not in (OperationType.PUTAWAY, OperationType.PICK):
            raise RollbackRejected(
                "撤销记录本身不可再撤销",
                context={"warehouse_id": int(warehouse_id), "entry_id": int(entry_id), "operation_type": op.value},
            )

        qty = original.quantity
        slot = (original.sku, original.lot_number, original.expiry_date)
        codes = [original.bin_code]
        if op == OperationType.PICK:
            everything = await self.store.load_bins(warehouse_id)
            self._bump_seq(warehouse_id, everything)
            codes.extend(b.code for b in everything if b.free_capacity > 0)

        try:
            async with self.holds.hold(warehouse_id, codes, owner=_owner(ref)) as held:
                # 持有后复查：并发撤销同一行只有一方成功
                await self._ensure_not_rolled_back(warehouse_id, original)
                bins = await self.store.load_bins(warehouse_id, held)
                by_code = {b.code: b for b in bins}
                origin = by_code.get(original.bin_code)

                if op == OperationType.PUTAWAY:
                    on_hand = sum(ln.quantity for ln in origin.lines if ln.slot_key == slot) if origin else 0
                    if on_hand < qty:
                        raise RollbackRejected(
                            f"库位 {original.bin_code} 现存 {on_hand}，不足以撤销上架 {qty}",
                            context=self._rollback_ctx(warehouse_id, original, available_qty=on_hand),
                        )
                    before = origin.current_qty
                    origin.take(slot, qty)
                    moves = [(origin, -qty, before, f"Rollback put-away - Removing {qty} units")]
                else:
                    moves = self._return_picked(warehouse_id, original, bins, origin)

                history = rollback_entries(original=original, ref=ref, moves=moves)
                changed = list({m[0].code: m[0] for m in moves}.values())
                saved = await self._commit(warehouse_id, changed, history)
        except RollbackRejected:
            rollback_total.labels(op.value, "rejected").inc()
            raise

        rollback_total.labels(op.value, "done").inc()
        logger.info(
            "rollback done: wh=%s ref=%s entry=%s op=%s bins=%s",
            warehouse_id,
            ref,
            entry_id,
            op.value,
            [m[0].code for m in moves],
        )
        return RollbackOutcome(ref=ref, original=original, history=saved)

    async def search_stock(
        self,
        warehouse_id: int,
        term: Optional[str] = None,
        *,
        status: Optional[BinStatus] = None,
        min_quantity: Optional[int] = None,
    ) -> List[SkuStock]:
        bins = await self.store.load_bins(warehouse_id)
        return search_stock(bins, term, status=status, min_quantity=min_quantity)

    # ---------------------------------------------------------------
    # 持有诊断 / 应急
    # ---------------------------------------------------------------
    def held_bins(self, warehouse_id: int) -> List[JsonLike]:
        return [h.to_dict() for h in self.holds.held_bins(warehouse_id)]

    def force_release(self, warehouse_id: int) -> int:
        return self.holds.force_release(warehouse_id)

    # ---------------------------------------------------------------
    # 内部
    # ---------------------------------------------------------------
    async def _history_entry(self, warehouse_id: int, entry_id: int) -> HistoryEntry:
        for e in await self.store.list_history(warehouse_id):
            if e.id == int(entry_id):
                return e
        raise HistoryEntryNotFound(
            f"历史记录 {entry_id} 不存在",
            context={"warehouse_id": int(warehouse_id), "entry_id": int(entry_id)},
        )

    async def _ensure_not_rolled_back(self, warehouse_id: int, original: HistoryEntry) -> None:
        rows = await self.store.list_history(warehouse_id, operation_type=OperationType.ROLLBACK)
        if any(e.rollback_of == original.id for e in rows):
            raise RollbackRejected(
                f"历史记录 {original.id} 已撤销",
                context=self._rollback_ctx(warehouse_id, original),
            )

    def _return_picked(
        self,
        warehouse_id: int,
        original: HistoryEntry,
        bins: Sequence[Bin],
        origin: Optional[Bin],
    ) -> List[Tuple[Bin, int, int, str]]:
        qty = original.quantity
        seq = self._next_seq(warehouse_id)
        if origin is not None and origin.free_capacity >= qty:
            before = origin.current_qty
            origin.put(
                ContentLine(
                    sku=original.sku,
                    quantity=qty,
                    lot_number=original.lot_number,
                    expiry_date=original.expiry_date,
                    placed_seq=seq,
                )
            )
            return [(origin, qty, before, f"Rollback pick - Returning {qty} units to original bin")]

        req = PutawayRequest(original.sku, qty, lot_number=original.lot_number, expiry_date=original.expiry_date)
        plan = self.allocator.allocate(bins, req, placed_seq=seq, require_full=True)
        if not plan.applied:
            raise RollbackRejected(
                f"原库位 {original.bin_code} 空间不足且没有可放回 {qty} 的库位",
                context=self._rollback_ctx(warehouse_id, original, available_qty=plan.allocated_qty),
            )
        by_code = {b.code: b for b in bins}
        return [
            (by_code[ln.bin_code], ln.allocated_qty, ln.qty_before, f"Rollback pick - {ln.reason}")
            for ln in plan.lines
        ]

    @staticmethod
    def _rollback_ctx(warehouse_id: int, original: HistoryEntry, **extra: Any) -> JsonLike:
        ctx = {
            "warehouse_id": int(warehouse_id),
            "entry_id": original.id,
            "operation_type": original.operation_type.value,
            "bin_code": original.bin_code,
            "sku": original.sku,
            "quantity": original.quantity,
        }
        ctx.update(extra)
        return ctx

    def _bump_seq(self, warehouse_id: int, bins: Sequence[Bin]) -> None:
        wh = int(warehouse_id)
        self._seq[wh] = max(self._seq.get(wh, 0), max_placed_seq(bins))

    def _next_seq(self, warehouse_id: int) -> int:
        wh = int(warehouse_id)
        self._seq[wh] = self._seq.get(wh, 0) + 1
        return self._seq[wh]

    async def _commit(
        self,
        warehouse_id: int,
        bins: Sequence[Bin],
        history: Sequence[HistoryEntry],
    ) -> List[HistoryEntry]:
        task = asyncio.ensure_future(self.store.save_bins(warehouse_id, bins, history))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # 提交不可中断：等落库结束再让取消继续传播（持有在此之前不释放）
            await task
            raise
