# binalloc/services/pick_executor.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence

from binalloc.domain.bin_state import Bin, check_invariants, lines_of
from binalloc.domain.errors import InvariantViolation
from binalloc.services.availability_resolver import PickCandidate

logger = logging.getLogger("binalloc.pick")

JsonLike = Dict[str, Any]


@dataclass
class PickLeg:
    bin_code: str
    sku: str
    lot_number: Optional[str]
    expiry_date: Optional[date]
    qty: int
    fifo_position: int
    qty_before: int
    qty_after: int
    was_mixed: bool
    collapsed: bool
    bin_emptied: bool

    def to_dict(self) -> JsonLike:
        return {
            "bin_code": self.bin_code,
            "sku": self.sku,
            "lot_number": self.lot_number,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "qty": int(self.qty),
            "fifo_position": int(self.fifo_position),
            "qty_before": int(self.qty_before),
            "qty_after": int(self.qty_after),
            "was_mixed": bool(self.was_mixed),
            "collapsed": bool(self.collapsed),
            "bin_emptied": bool(self.bin_emptied),
        }


@dataclass
class PickExecution:
    sku: str
    requested_qty: int
    legs: List[PickLeg] = field(default_factory=list)

    @property
    def picked_qty(self) -> int:
        return sum(lg.qty for lg in self.legs)

    @property
    def touched_bins(self) -> List[str]:
        out: List[str] = []
        for lg in self.legs:
            if lg.bin_code not in out:
                out.append(lg.bin_code)
        return out

    def to_dict(self) -> JsonLike:
        return {
            "sku": self.sku,
            "requested_qty": int(self.requested_qty),
            "picked_qty": self.picked_qty,
            "legs": [lg.to_dict() for lg in self.legs],
        }


def _slot_qty(b: Bin, cand: PickCandidate) -> int:
    for ln in lines_of(b.content):
        if ln.slot_key == cand.slot_key:
            return ln.quantity
    return 0


class PickExecutor:
    """
    拣货执行器：只负责“怎么扣”，不负责“能不能扣”。

    - 按 FIFO 候选顺序逐个槽位扣减，每个槽位最多扣 min(剩余需求, 该槽位可用量)
    - 纯库位：qty 直接减；减到 0 → 清空
    - 混放库位：对应内容行减量；行归零即删；剩 1 行 → 塌缩；剩 0 行 → 清空
    - 每个被动过的库位都跑不变量后置校验；失败即 InvariantViolation，整单中止

    bins 应为工作副本（由调用方决定何时提交），执行器直接就地修改。
    """

    def execute(
        self,
        bins_by_code: Mapping[str, Bin],
        candidates: Sequence[PickCandidate],
        requested_qty: int,
        *,
        sku: str,
    ) -> PickExecution:
        if int(requested_qty) <= 0:
            raise ValueError("requested quantity must be > 0")

        result = PickExecution(sku=sku, requested_qty=int(requested_qty))
        remaining = int(requested_qty)

        for cand in candidates:
            if remaining <= 0:
                break
            if cand.sku != sku:
                raise InvariantViolation(
                    "候选槽位与拣货 SKU 不一致",
                    context={"bin_code": cand.bin_code, "sku": sku, "candidate_sku": cand.sku},
                )
            b = bins_by_code.get(cand.bin_code)
            if b is None:
                # 候选库位不在本次持有的集合里：视为该槽位可用量为 0，交给上层比对承诺量
                continue

            on_hand = _slot_qty(b, cand)
            take = min(remaining, on_hand)
            if take <= 0:
                continue

            before = b.current_qty
            was_mixed = b.is_mixed
            b.take(cand.slot_key, take)
            check_invariants(b)

            leg = PickLeg(
                bin_code=b.code,
                sku=sku,
                lot_number=cand.lot_number,
                expiry_date=cand.expiry_date,
                qty=take,
                fifo_position=cand.fifo_position,
                qty_before=before,
                qty_after=b.current_qty,
                was_mixed=was_mixed,
                collapsed=was_mixed and not b.is_mixed and not b.is_empty,
                bin_emptied=b.is_empty,
            )
            result.legs.append(leg)
            remaining -= take

            logger.debug(
                "pick leg: bin=%s sku=%s take=%s %s→%s mixed=%s collapsed=%s emptied=%s",
                b.code,
                sku,
                take,
                before,
                leg.qty_after,
                was_mixed,
                leg.collapsed,
                leg.bin_emptied,
            )

        return result
