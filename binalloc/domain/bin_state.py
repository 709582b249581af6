# binalloc/domain/bin_state.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from binalloc.domain.errors import CapacityExceeded, InvariantViolation
from binalloc.models.enums import BinStatus

JsonLike = Dict[str, Any]

# (sku, lot_number, expiry_date)：同一槽位的判等口径
SlotKey = Tuple[str, Optional[str], Optional[date]]


@dataclass(frozen=True)
class ContentLine:
    """
    库位内一条内容行：(sku, lot, expiry, qty)。

    placed_seq：上架时记录的单调序号，用作 FIFO 的次级排序（越小越老）。
    """

    sku: str
    quantity: int
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    placed_seq: int = 0

    @property
    def slot_key(self) -> SlotKey:
        return (self.sku, self.lot_number, self.expiry_date)

    def to_dict(self) -> JsonLike:
        return {
            "sku": self.sku,
            "quantity": int(self.quantity),
            "lot_number": self.lot_number,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "placed_seq": int(self.placed_seq),
        }


@dataclass(frozen=True)
class EmptyContent:
    pass


@dataclass(frozen=True)
class PureContent:
    """纯库位：全部 qty 属于同一个 (sku, lot, expiry)。"""

    sku: str
    quantity: int
    lot_number: Optional[str] = None
    expiry_date: Optional[date] = None
    placed_seq: int = 0

    def as_line(self) -> ContentLine:
        return ContentLine(
            sku=self.sku,
            quantity=self.quantity,
            lot_number=self.lot_number,
            expiry_date=self.expiry_date,
            placed_seq=self.placed_seq,
        )


@dataclass(frozen=True)
class MixedContent:
    """
    混放库位：≥2 个不同槽位的内容行。

    primary_hint 只是“最初占用时的 SKU”历史标签，任何可用量计算都不得读取它。
    """

    lines: Tuple[ContentLine, ...]
    primary_hint: Optional[str] = None


BinContent = Union[EmptyContent, PureContent, MixedContent]

EMPTY = EmptyContent()


# ---------------------------------------------------------------
# 纯函数：内容态迁移
# ---------------------------------------------------------------
def lines_of(content: BinContent) -> Tuple[ContentLine, ...]:
    if isinstance(content, MixedContent):
        return content.lines
    if isinstance(content, PureContent):
        return (content.as_line(),)
    return ()


def settle(lines: Iterable[ContentLine], *, primary_hint: Optional[str] = None) -> BinContent:
    """
    把一组内容行收敛为合法内容态：

    - qty == 0 的行立即移除
    - 剩 0 行 → EMPTY
    - 剩 1 行 → 塌缩为纯库位
    - ≥2 行 → 混放
    qty < 0 不可能由正确算法产生，直接按一致性故障处理。
    """
    kept: List[ContentLine] = []
    for ln in lines:
        if ln.quantity < 0:
            raise InvariantViolation(
                "内容行数量为负数",
                context={"sku": ln.sku, "lot_number": ln.lot_number, "quantity": int(ln.quantity)},
            )
        if ln.quantity > 0:
            kept.append(ln)

    if not kept:
        return EMPTY
    if len(kept) == 1:
        only = kept[0]
        return PureContent(
            sku=only.sku,
            quantity=only.quantity,
            lot_number=only.lot_number,
            expiry_date=only.expiry_date,
            placed_seq=only.placed_seq,
        )
    return MixedContent(lines=tuple(kept), primary_hint=primary_hint)


def add_line(content: BinContent, incoming: ContentLine) -> BinContent:
    """同槽位合并数量（保留更老的 placed_seq），否则追加新行。"""
    if incoming.quantity <= 0:
        raise ValueError("incoming quantity must be > 0")

    if isinstance(content, EmptyContent):
        return settle([incoming])

    hint = content.sku if isinstance(content, PureContent) else content.primary_hint

    merged: List[ContentLine] = []
    hit = False
    for ln in lines_of(content):
        if ln.slot_key == incoming.slot_key:
            merged.append(
                replace(
                    ln,
                    quantity=ln.quantity + incoming.quantity,
                    placed_seq=min(ln.placed_seq, incoming.placed_seq),
                )
            )
            hit = True
        else:
            merged.append(ln)
    if not hit:
        merged.append(incoming)
    return settle(merged, primary_hint=hint)


def remove_from_slot(content: BinContent, slot: SlotKey, qty: int) -> BinContent:
    """从指定槽位扣减 qty；扣到 0 的行移除，然后塌缩 / 清空。"""
    if qty <= 0:
        raise ValueError("qty must be > 0")

    hint = content.primary_hint if isinstance(content, MixedContent) else None

    out: List[ContentLine] = []
    hit = False
    for ln in lines_of(content):
        if ln.slot_key == slot and not hit:
            if ln.quantity < qty:
                raise InvariantViolation(
                    "扣减数量超过槽位现存量",
                    context={"sku": slot[0], "lot_number": slot[1], "on_hand": ln.quantity, "take": qty},
                )
            out.append(replace(ln, quantity=ln.quantity - qty))
            hit = True
        else:
            out.append(ln)
    if not hit:
        raise InvariantViolation(
            "库位中不存在要扣减的槽位",
            context={"sku": slot[0], "lot_number": slot[1]},
        )
    return settle(out, primary_hint=hint)


def available_for_sku(content: BinContent, sku: str) -> int:
    """
    单库位可用量的唯一口径（Resolver 与 Executor 共用）：

    - 混放：只看内容行；primary_hint 一律不看
    - 纯库位：sku 相同取 qty，否则 0
    """
    if isinstance(content, MixedContent):
        return sum(ln.quantity for ln in content.lines if ln.sku == sku)
    if isinstance(content, PureContent):
        return content.quantity if content.sku == sku else 0
    return 0


def slots_for_sku(content: BinContent, sku: str) -> List[ContentLine]:
    return [ln for ln in lines_of(content) if ln.sku == sku and ln.quantity > 0]


# ---------------------------------------------------------------
# Bin 聚合
# ---------------------------------------------------------------
@dataclass
class Bin:
    """
    一个库位（聚合根）。内容态只通过 put / take 变更，不允许外部直接改字段。
    """

    code: str
    capacity: int
    content: BinContent = field(default=EMPTY)
    sequence: int = 0

    @property
    def current_qty(self) -> int:
        return sum(ln.quantity for ln in lines_of(self.content))

    @property
    def free_capacity(self) -> int:
        return int(self.capacity) - self.current_qty

    @property
    def status(self) -> BinStatus:
        return BinStatus.OCCUPIED if self.current_qty > 0 else BinStatus.AVAILABLE

    @property
    def is_mixed(self) -> bool:
        return isinstance(self.content, MixedContent)

    @property
    def is_empty(self) -> bool:
        return isinstance(self.content, EmptyContent)

    @property
    def primary_sku(self) -> Optional[str]:
        c = self.content
        if isinstance(c, PureContent):
            return c.sku
        if isinstance(c, MixedContent):
            return c.primary_hint
        return None

    @property
    def lines(self) -> Tuple[ContentLine, ...]:
        return lines_of(self.content)

    def holds_slot(self, slot: SlotKey) -> bool:
        return any(ln.slot_key == slot for ln in self.lines)

    def clone(self) -> "Bin":
        # content 为不可变值对象，浅拷贝即可
        return replace(self)

    def put(self, incoming: ContentLine) -> None:
        if incoming.quantity > self.free_capacity:
            raise CapacityExceeded(
                f"库位 {self.code} 容量不足",
                context={
                    "bin_code": self.code,
                    "capacity": int(self.capacity),
                    "current_qty": self.current_qty,
                    "incoming_qty": int(incoming.quantity),
                },
            )
        self.content = add_line(self.content, incoming)

    def take(self, slot: SlotKey, qty: int) -> None:
        self.content = remove_from_slot(self.content, slot, qty)

    # -----------------------------------------------------------
    # 记录形态（持久化 / 对外交换，字段与数据模型一一对应）
    # -----------------------------------------------------------
    def to_record(self) -> JsonLike:
        c = self.content
        pure = c if isinstance(c, PureContent) else None
        return {
            "code": self.code,
            "capacity": int(self.capacity),
            "sequence": int(self.sequence),
            "current_qty": self.current_qty,
            "status": self.status.value,
            "primary_sku": self.primary_sku,
            "lot_number": pure.lot_number if pure else None,
            "expiry_date": pure.expiry_date.isoformat() if pure and pure.expiry_date else None,
            "placed_seq": pure.placed_seq if pure else None,
            "contents": [ln.to_dict() for ln in c.lines] if isinstance(c, MixedContent) else None,
        }

    @classmethod
    def from_record(cls, rec: Mapping[str, Any]) -> "Bin":
        """
        从记录构建聚合并校验：

        - current_qty 与内容之和不一致 → InvariantViolation
        - 只剩 1 行的混放记录（过渡态）→ 载入时直接塌缩
        """
        code = str(rec["code"])
        capacity = int(rec["capacity"])
        recorded_qty = int(rec.get("current_qty") or 0)
        contents = rec.get("contents")

        if contents is not None:
            lines = [_line_from_dict(d, code=code) for d in contents]
            for ln in lines:
                if ln.quantity <= 0:
                    raise InvariantViolation(
                        f"库位 {code} 存在数量 ≤ 0 的内容行",
                        context={"bin_code": code, "sku": ln.sku, "quantity": ln.quantity},
                    )
            content = settle(lines, primary_hint=rec.get("primary_sku"))
        elif recorded_qty > 0:
            sku = rec.get("primary_sku")
            if not sku:
                raise InvariantViolation(
                    f"库位 {code} 有数量但没有 SKU",
                    context={"bin_code": code, "current_qty": recorded_qty},
                )
            content = PureContent(
                sku=str(sku),
                quantity=recorded_qty,
                lot_number=rec.get("lot_number"),
                expiry_date=_as_date(rec.get("expiry_date")),
                placed_seq=int(rec.get("placed_seq") or 0),
            )
        else:
            content = EMPTY

        b = cls(code=code, capacity=capacity, content=content, sequence=int(rec.get("sequence") or 0))
        if b.current_qty != recorded_qty:
            raise InvariantViolation(
                f"库位 {code} 记录数量与内容不守恒",
                context={"bin_code": code, "current_qty": recorded_qty, "contents_sum": b.current_qty},
            )
        check_invariants(b)
        return b


def _as_date(v: Any) -> Optional[date]:
    if v is None or v == "":
        return None
    if isinstance(v, date):
        return v
    return date.fromisoformat(str(v)[:10])


def _line_from_dict(d: Mapping[str, Any], *, code: str) -> ContentLine:
    if not d.get("sku"):
        raise InvariantViolation(f"库位 {code} 内容行缺少 sku", context={"bin_code": code})
    return ContentLine(
        sku=str(d["sku"]),
        quantity=int(d.get("quantity") or 0),
        lot_number=d.get("lot_number"),
        expiry_date=_as_date(d.get("expiry_date")),
        placed_seq=int(d.get("placed_seq") or 0),
    )


def check_invariants(b: Bin) -> None:
    """
    不变量后置校验（每次变更后必跑）。失败即 InvariantViolation，不做任何修补。
    """
    ctx = {"bin_code": b.code, "capacity": int(b.capacity), "current_qty": b.current_qty}

    if int(b.capacity) <= 0:
        raise InvariantViolation(f"库位 {b.code} 容量必须为正", context=ctx)

    # 容量上下界
    if b.current_qty < 0 or b.current_qty > int(b.capacity):
        raise InvariantViolation(f"库位 {b.code} 超出容量", context=ctx)

    c = b.content
    if isinstance(c, PureContent):
        if c.quantity <= 0 or not c.sku:
            raise InvariantViolation(f"纯库位 {b.code} 数量/SKU 非法", context=ctx)
    elif isinstance(c, MixedContent):
        # 不得残留零数量行
        bad = [ln for ln in c.lines if ln.quantity <= 0]
        if bad:
            raise InvariantViolation(
                f"混放库位 {b.code} 残留空行",
                context=dict(ctx, sku=bad[0].sku, quantity=bad[0].quantity),
            )
        # 同槽位不得重复，且至少两个不同槽位
        keys = [ln.slot_key for ln in c.lines]
        if len(set(keys)) != len(keys):
            raise InvariantViolation(f"混放库位 {b.code} 存在重复槽位", context=ctx)
        if len(keys) < 2:
            raise InvariantViolation(f"混放库位 {b.code} 未塌缩为纯库位", context=ctx)

    # EMPTY 与 AVAILABLE 等价
    if (b.current_qty == 0) != isinstance(c, EmptyContent):
        raise InvariantViolation(f"库位 {b.code} 空/占用状态不一致", context=ctx)


def check_all(bins: Sequence[Bin]) -> None:
    for b in bins:
        check_invariants(b)


def max_placed_seq(bins: Iterable[Bin]) -> int:
    seqs = [ln.placed_seq for b in bins for ln in b.lines]
    return max(seqs) if seqs else 0
