# binalloc/services/pick_coordinator.py
from __future__ import annotations

import logging
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from binalloc.domain.bin_state import Bin, SlotKey
from binalloc.domain.errors import PickConsistencyFault
from binalloc.models.enums import PickState
from binalloc.services.availability_resolver import AvailabilityResolver, AvailabilityResult
from binalloc.services.pick_executor import PickExecution, PickExecutor

logger = logging.getLogger("binalloc.pick")

JsonLike = Dict[str, Any]


@dataclass(frozen=True)
class PickRequestLine:
    sku: str
    quantity: int

    def validate(self) -> None:
        if not self.sku or not str(self.sku).strip():
            raise ValueError("pick 行必须提供 sku")
        if int(self.quantity) <= 0:
            raise ValueError("pick quantity must be > 0")


@dataclass
class LineShortfall:
    line_index: int
    sku: str
    requested_qty: int
    available_qty: int

    @property
    def short_qty(self) -> int:
        return max(0, int(self.requested_qty) - int(self.available_qty))

    def to_dict(self) -> JsonLike:
        return {
            "type": "shortage",
            "path": f"lines[{self.line_index}]",
            "line_index": int(self.line_index),
            "sku_code": self.sku,
            "required_qty": int(self.requested_qty),
            "available_qty": int(self.available_qty),
            "short_qty": self.short_qty,
            "reason": "insufficient_stock",
        }


@dataclass
class PickLineResult:
    line_index: int
    sku: str
    requested_qty: int
    execution: PickExecution

    def to_dict(self) -> JsonLike:
        return {
            "line_index": int(self.line_index),
            "sku": self.sku,
            "requested_qty": int(self.requested_qty),
            "picked_qty": self.execution.picked_qty,
            "legs": [lg.to_dict() for lg in self.execution.legs],
        }


@dataclass
class PickResult:
    state: PickState
    transitions: List[PickState] = field(default_factory=list)
    checks: List[AvailabilityResult] = field(default_factory=list)
    lines: List[PickLineResult] = field(default_factory=list)
    shortfalls: List[LineShortfall] = field(default_factory=list)
    # 仅 DONE 时有值：执行后的工作副本（code → Bin），由调用方决定提交
    bins_after: Dict[str, Bin] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.state == PickState.DONE

    @property
    def touched_bins(self) -> List[str]:
        out: List[str] = []
        for ln in self.lines:
            for code in ln.execution.touched_bins:
                if code not in out:
                    out.append(code)
        return out

    def to_dict(self) -> JsonLike:
        return {
            "state": self.state.value,
            "transitions": [s.value for s in self.transitions],
            "lines": [ln.to_dict() for ln in self.lines],
            "shortfalls": [s.to_dict() for s in self.shortfalls],
            "availability": [c.to_dict() for c in self.checks],
        }


class PickCoordinator:
    """
    两阶段拣货协调器（complete-failure 策略）：

        CHECKING ──全部可用──▶ ALL_AVAILABLE ──▶ EXECUTING ──▶ DONE
            └──任一不足──▶ SOME_UNAVAILABLE ──▶ REJECTED

    Phase 1：对每一行跑 Resolver（同 SKU 多行累计需求，避免同一批货被承诺两次）。
    Phase 2：按请求顺序逐行执行；每行必须恰好扣出 Phase 1 承诺的槽位与数量，
             否则抛 PickConsistencyFault（两阶段之间状态漂移，不是普通短缺）。

    协调器自己在副本上执行；入参 bins 永远不被修改。
    调用方负责“Phase 1 到 Phase 2 之间没人改这些库位”（见 BinHoldManager）。
    """

    def __init__(
        self,
        resolver: Optional[AvailabilityResolver] = None,
        executor: Optional[PickExecutor] = None,
    ) -> None:
        self.resolver = resolver or AvailabilityResolver()
        self.executor = executor or PickExecutor()

    # ---------------------------------------------------------------
    # Phase 1：只读检查
    # ---------------------------------------------------------------
    def check(
        self,
        bins: Sequence[Bin],
        lines: Sequence[PickRequestLine],
    ) -> Tuple[List[AvailabilityResult], List[LineShortfall], Dict[int, Dict[Tuple[str, SlotKey], int]]]:
        """
        返回 (逐行可用量, 不足行, 逐行承诺)。

        逐行承诺：line_index → {(bin_code, slot) 的扣减量}，按 FIFO 把同 SKU 的候选依次切给各行。
        """
        if not lines:
            raise ValueError("pick 请求至少包含一行")
        for ln in lines:
            ln.validate()

        demand: "OrderedDict[str, int]" = OrderedDict()
        for ln in lines:
            demand[ln.sku] = demand.get(ln.sku, 0) + int(ln.quantity)

        per_sku: Dict[str, AvailabilityResult] = {
            sku: self.resolver.resolve(bins, sku, qty) for sku, qty in demand.items()
        }

        checks: List[AvailabilityResult] = []
        shortfalls: List[LineShortfall] = []
        promises: Dict[int, Dict[Tuple[str, SlotKey], int]] = {}

        # 同 SKU：按行顺序从 FIFO 候选里依次切片
        cursor: Dict[str, List[List[Any]]] = defaultdict(list)
        for sku, res in per_sku.items():
            cursor[sku] = [[c, c.available_qty] for c in res.candidates]

        for idx, ln in enumerate(lines):
            # 本行可见的只是前面同 SKU 行切剩的量
            remaining = [replace(c, available_qty=left) for c, left in cursor[ln.sku] if left > 0]
            line_check = AvailabilityResult(sku=ln.sku, requested_qty=int(ln.quantity), candidates=remaining)
            left_for_line = line_check.total_available
            checks.append(line_check)
            if left_for_line < int(ln.quantity):
                shortfalls.append(
                    LineShortfall(
                        line_index=idx,
                        sku=ln.sku,
                        requested_qty=int(ln.quantity),
                        available_qty=left_for_line,
                    )
                )

            need = int(ln.quantity)
            promise: Dict[Tuple[str, SlotKey], int] = {}
            for slot in cursor[ln.sku]:
                if need <= 0:
                    break
                cand, left = slot
                take = min(need, left)
                if take <= 0:
                    continue
                key = (cand.bin_code, cand.slot_key)
                promise[key] = promise.get(key, 0) + take
                slot[1] = left - take
                need -= take
            promises[idx] = promise

        return checks, shortfalls, promises

    # ---------------------------------------------------------------
    # Phase 1 + Phase 2
    # ---------------------------------------------------------------
    def run(self, bins: Sequence[Bin], lines: Sequence[PickRequestLine]) -> PickResult:
        result = PickResult(state=PickState.CHECKING, transitions=[PickState.CHECKING])

        checks, shortfalls, promises = self.check(bins, lines)
        result.checks = checks

        if shortfalls:
            self._goto(result, PickState.SOME_UNAVAILABLE)
            self._goto(result, PickState.REJECTED)
            result.shortfalls = shortfalls
            logger.info(
                "pick rejected: %s",
                ", ".join(f"{s.sku} need={s.requested_qty} avail={s.available_qty}" for s in shortfalls),
            )
            return result

        self._goto(result, PickState.ALL_AVAILABLE)
        self._goto(result, PickState.EXECUTING)

        work: Dict[str, Bin] = {b.code: b.clone() for b in bins}
        applied: List[int] = []

        for idx, ln in enumerate(lines):
            chk = checks[idx]
            execution = self.executor.execute(work, chk.candidates, int(ln.quantity), sku=ln.sku)

            got: Dict[Tuple[str, SlotKey], int] = {}
            for lg in execution.legs:
                key = (lg.bin_code, (lg.sku, lg.lot_number, lg.expiry_date))
                got[key] = got.get(key, 0) + lg.qty

            if execution.picked_qty != int(ln.quantity) or got != promises[idx]:
                logger.error(
                    "pick consistency fault: line=%s sku=%s expected=%s actual=%s applied=%s",
                    idx,
                    ln.sku,
                    ln.quantity,
                    execution.picked_qty,
                    applied,
                )
                raise PickConsistencyFault(
                    f"第 {idx} 行 {ln.sku} 执行量与检查阶段承诺不一致",
                    line_index=idx,
                    sku=ln.sku,
                    expected_qty=int(ln.quantity),
                    actual_qty=execution.picked_qty,
                    applied_lines=applied,
                    context={"expected_legs": _fmt(promises[idx]), "actual_legs": _fmt(got)},
                )

            result.lines.append(
                PickLineResult(line_index=idx, sku=ln.sku, requested_qty=int(ln.quantity), execution=execution)
            )
            applied.append(idx)

        touched = set(result.touched_bins)
        result.bins_after = {code: b for code, b in work.items() if code in touched}
        self._goto(result, PickState.DONE)
        return result

    @staticmethod
    def _goto(result: PickResult, state: PickState) -> None:
        result.state = state
        result.transitions.append(state)


def _fmt(legs: Dict[Tuple[str, SlotKey], int]) -> List[JsonLike]:
    return [
        {"bin_code": code, "sku": slot[0], "lot_number": slot[1], "qty": int(q)}
        for (code, slot), q in legs.items()
    ]
