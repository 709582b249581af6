# binalloc/services/bin_repository.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from binalloc.core.tx import tx_commit
from binalloc.domain.bin_state import Bin, PureContent
from binalloc.domain.errors import BinConflict, BinNotFound
from binalloc.models.bin import BinContentLineRow, BinRow
from binalloc.models.enums import AllocationType, OperationType
from binalloc.models.operation_history import BinOperationHistory
from binalloc.services.operation_journal import HistoryEntry

logger = logging.getLogger("binalloc.store")

JsonLike = Dict[str, Any]


def _row_to_record(row: BinRow) -> JsonLike:
    return {
        "code": row.code,
        "capacity": int(row.capacity),
        "sequence": int(row.sequence or 0),
        "current_qty": int(row.current_qty or 0),
        "status": row.status,
        "primary_sku": row.primary_sku,
        "lot_number": row.lot_number,
        "expiry_date": row.expiry_date,
        "placed_seq": row.placed_seq,
        "contents": (
            [
                {
                    "sku": ln.sku,
                    "quantity": int(ln.quantity),
                    "lot_number": ln.lot_number,
                    "expiry_date": ln.expiry_date,
                    "placed_seq": int(ln.placed_seq or 0),
                }
                for ln in row.contents
            ]
            if row.is_mixed
            else None
        ),
    }


def _apply_to_row(row: BinRow, b: Bin) -> None:
    c = b.content
    pure = c if isinstance(c, PureContent) else None
    row.capacity = int(b.capacity)
    row.sequence = int(b.sequence)
    row.current_qty = b.current_qty
    row.status = b.status.value
    row.primary_sku = b.primary_sku
    row.is_mixed = b.is_mixed
    row.lot_number = pure.lot_number if pure else None
    row.expiry_date = pure.expiry_date if pure else None
    row.placed_seq = pure.placed_seq if pure else None
    # 内容行整体替换（delete-orphan 负责删除旧行）
    row.contents = (
        [
            BinContentLineRow(
                sku=ln.sku,
                lot_number=ln.lot_number,
                expiry_date=ln.expiry_date,
                quantity=int(ln.quantity),
                placed_seq=int(ln.placed_seq),
            )
            for ln in b.lines
        ]
        if b.is_mixed
        else []
    )


def _aware(dt: datetime) -> datetime:
    # SQLite 不保存时区，读回时按 UTC 处理
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _history_from_row(r: BinOperationHistory) -> HistoryEntry:
    return HistoryEntry(
        id=int(r.id),
        warehouse_id=int(r.warehouse_id),
        ref=r.ref,
        ref_line=int(r.ref_line),
        operation_type=OperationType(r.operation_type),
        bin_code=r.bin_code,
        sku=r.sku,
        lot_number=r.lot_number,
        expiry_date=r.expiry_date,
        delta=int(r.delta),
        qty_before=int(r.qty_before),
        qty_after=int(r.qty_after),
        allocation_type=AllocationType(r.allocation_type) if r.allocation_type else None,
        reason=r.reason,
        utilization=r.utilization,
        is_mixed=bool(r.is_mixed),
        fifo_position=r.fifo_position,
        bin_emptied=bool(r.bin_emptied),
        rollback_of=r.rollback_of,
        occurred_at=_aware(r.occurred_at),
    )


def _history_to_row(e: HistoryEntry) -> BinOperationHistory:
    return BinOperationHistory(
        warehouse_id=int(e.warehouse_id),
        ref=e.ref,
        ref_line=int(e.ref_line),
        operation_type=e.operation_type.value,
        bin_code=e.bin_code,
        sku=e.sku,
        lot_number=e.lot_number,
        expiry_date=e.expiry_date,
        delta=int(e.delta),
        qty_before=int(e.qty_before),
        qty_after=int(e.qty_after),
        allocation_type=e.allocation_type.value if e.allocation_type else None,
        reason=e.reason,
        utilization=e.utilization,
        is_mixed=bool(e.is_mixed),
        fifo_position=e.fifo_position,
        bin_emptied=bool(e.bin_emptied),
        rollback_of=e.rollback_of,
        occurred_at=e.occurred_at,
    )


class SqlBinStore:
    """
    SQLAlchemy 异步存储：

    - 每次调用独立会话；写操作在 tx_commit 内完成（库位 + 历史同一事务）
    - 读出的记录一律经 Bin.from_record 校验（current_qty 与内容不守恒即 InvariantViolation）
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._maker = session_maker

    async def load_bins(self, warehouse_id: int, codes: Optional[Iterable[str]] = None) -> List[Bin]:
        stmt = sa.select(BinRow).where(BinRow.warehouse_id == int(warehouse_id))
        if codes is not None:
            code_list = list(codes)
            if not code_list:
                return []
            stmt = stmt.where(BinRow.code.in_(code_list))
        stmt = stmt.order_by(BinRow.sequence.asc(), BinRow.code.asc())

        async with self._maker() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [Bin.from_record(_row_to_record(r)) for r in rows]

    async def save_bins(
        self,
        warehouse_id: int,
        bins: Sequence[Bin],
        history: Sequence[HistoryEntry] = (),
    ) -> List[HistoryEntry]:
        wh = int(warehouse_id)
        codes = [b.code for b in bins]

        async with self._maker() as session:
            async with tx_commit(session):
                rows = {}
                if codes:
                    res = await session.execute(
                        sa.select(BinRow).where(BinRow.warehouse_id == wh, BinRow.code.in_(codes))
                    )
                    rows = {r.code: r for r in res.scalars().all()}
                missing = [c for c in codes if c not in rows]
                if missing:
                    raise BinNotFound(
                        f"库位不存在：{', '.join(missing)}",
                        context={"warehouse_id": wh, "bin_codes": missing},
                    )

                for b in bins:
                    _apply_to_row(rows[b.code], b)

                hist_rows = [_history_to_row(e) for e in history]
                session.add_all(hist_rows)
                await session.flush()
                saved = [_history_from_row(r) for r in hist_rows]

        logger.debug("saved bins: wh=%s bins=%s history=%s", wh, codes, len(saved))
        return saved

    async def register_bins(self, warehouse_id: int, bins: Sequence[Bin]) -> List[Bin]:
        wh = int(warehouse_id)
        codes = [b.code for b in bins]

        async with self._maker() as session:
            async with tx_commit(session):
                res = await session.execute(
                    sa.select(BinRow.code).where(BinRow.warehouse_id == wh, BinRow.code.in_(codes))
                )
                existing = set(res.scalars().all())
                dup = sorted({c for c in codes if c in existing or codes.count(c) > 1})
                if dup:
                    raise BinConflict(
                        f"库位编码已存在：{', '.join(dup)}",
                        context={"warehouse_id": wh, "bin_codes": dup},
                    )
                for b in bins:
                    row = BinRow(warehouse_id=wh, code=b.code)
                    _apply_to_row(row, b)
                    session.add(row)

        return await self.load_bins(wh, codes)

    async def list_history(
        self,
        warehouse_id: int,
        *,
        sku: Optional[str] = None,
        bin_code: Optional[str] = None,
        operation_type: Optional[OperationType] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[HistoryEntry]:
        H = BinOperationHistory
        stmt = sa.select(H).where(H.warehouse_id == int(warehouse_id))
        if sku:
            stmt = stmt.where(H.sku == sku)
        if bin_code:
            stmt = stmt.where(H.bin_code == bin_code)
        if operation_type:
            stmt = stmt.where(H.operation_type == operation_type.value)
        stmt = stmt.order_by(H.id.asc())

        async with self._maker() as session:
            rows = (await session.execute(stmt)).scalars().all()
            out = [_history_from_row(r) for r in rows]

        # 时间窗在内存里过滤：SQLite 下 DateTime 读回不带时区
        if since:
            out = [e for e in out if e.occurred_at >= since]
        if until:
            out = [e for e in out if e.occurred_at <= until]
        return out
