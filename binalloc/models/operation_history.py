# binalloc/models/operation_history.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import Index
from sqlalchemy.orm import Mapped, mapped_column

from binalloc.db.base import Base


class BinOperationHistory(Base):
    """
    库位操作历史（只增不改）

    - (warehouse_id, ref) 归集同一次操作的全部行，ref_line 为行序
    - delta 入正出负；qty_before / qty_after 为整库位总量
    - ROLLBACK 行经 rollback_of 指回原行；同一原行只能撤销一次
    """

    __tablename__ = "bin_operation_history"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    warehouse_id: Mapped[int] = mapped_column(sa.Integer, nullable=False, index=True)
    ref: Mapped[str] = mapped_column(sa.String(128), nullable=False)
    ref_line: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    operation_type: Mapped[str] = mapped_column(sa.String(16), nullable=False)

    bin_code: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    sku: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    lot_number: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    expiry_date: Mapped[Optional[date]] = mapped_column(sa.Date, nullable=True)

    delta: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    qty_before: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    qty_after: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    allocation_type: Mapped[Optional[str]] = mapped_column(sa.String(32), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(sa.String(255), nullable=True)
    utilization: Mapped[Optional[float]] = mapped_column(sa.Float, nullable=True)
    is_mixed: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    fifo_position: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    bin_emptied: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    # 撤销行指向被撤销的原历史行
    rollback_of: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True, index=True)

    occurred_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_bin_history_wh_ref", "warehouse_id", "ref"),
        Index("ix_bin_history_wh_sku_bin", "warehouse_id", "sku", "bin_code"),
        Index("ix_bin_history_occurred_at", "occurred_at"),
    )
