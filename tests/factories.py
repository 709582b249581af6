# tests/factories.py
from __future__ import annotations

from datetime import date
from typing import Optional, Sequence, Tuple

from binalloc.domain.bin_state import EMPTY, Bin, ContentLine, MixedContent, PureContent


def empty_bin(code: str, capacity: int = 10, sequence: int = 0) -> Bin:
    return Bin(code=code, capacity=capacity, content=EMPTY, sequence=sequence)


def pure_bin(
    code: str,
    sku: str,
    qty: int,
    *,
    capacity: int = 10,
    sequence: int = 0,
    lot: Optional[str] = None,
    expiry: Optional[date] = None,
    placed_seq: int = 0,
) -> Bin:
    return Bin(
        code=code,
        capacity=capacity,
        content=PureContent(sku=sku, quantity=qty, lot_number=lot, expiry_date=expiry, placed_seq=placed_seq),
        sequence=sequence,
    )


def mixed_bin(
    code: str,
    lines: Sequence[Tuple[str, int]],
    *,
    capacity: int = 10,
    sequence: int = 0,
    hint: Optional[str] = None,
) -> Bin:
    """lines: [(sku, qty), ...]；placed_seq 按出现顺序递增。"""
    content = MixedContent(
        lines=tuple(ContentLine(sku=s, quantity=q, placed_seq=i) for i, (s, q) in enumerate(lines, start=1)),
        primary_hint=hint,
    )
    return Bin(code=code, capacity=capacity, content=content, sequence=sequence)


def total_qty(bins: Sequence[Bin], sku: Optional[str] = None) -> int:
    return sum(ln.quantity for b in bins for ln in b.lines if sku is None or ln.sku == sku)
