# binalloc/models/bin.py
from __future__ import annotations

from datetime import date
from typing import List, Optional

import sqlalchemy as sa
from sqlalchemy import CheckConstraint, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from binalloc.db.base import Base


class BinRow(Base):
    """
    库位主表 (warehouse_id, code)

    - current_qty 为冗余总量，必须等于内容之和（载入时校验）
    - 纯库位：primary_sku / lot_number / expiry_date / placed_seq 描述唯一内容
    - 混放库位：is_mixed = true，内容在 bin_content_lines；primary_sku 仅为历史标签
    """

    __tablename__ = "bins"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    warehouse_id: Mapped[int] = mapped_column(sa.Integer, nullable=False, index=True)
    code: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    capacity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    sequence: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    current_qty: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default="available")
    primary_sku: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    lot_number: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    expiry_date: Mapped[Optional[date]] = mapped_column(sa.Date, nullable=True)
    placed_seq: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)
    is_mixed: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)

    contents: Mapped[List["BinContentLineRow"]] = relationship(
        back_populates="bin",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="BinContentLineRow.id",
    )

    __table_args__ = (
        UniqueConstraint("warehouse_id", "code", name="uq_bins_wh_code"),
        CheckConstraint("capacity > 0", name="ck_bins_capacity_positive"),
        CheckConstraint("current_qty >= 0 AND current_qty <= capacity", name="ck_bins_qty_within_capacity"),
        Index("ix_bins_wh_sequence", "warehouse_id", "sequence"),
    )

    def __repr__(self) -> str:
        return f"<BinRow wh={self.warehouse_id} code={self.code} qty={self.current_qty}/{self.capacity}>"


class BinContentLineRow(Base):
    """混放库位的内容行；qty 必须 > 0（归零即删）。"""

    __tablename__ = "bin_content_lines"

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    bin_id: Mapped[int] = mapped_column(
        sa.Integer,
        sa.ForeignKey("bins.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sku: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    lot_number: Mapped[Optional[str]] = mapped_column(sa.String(64), nullable=True)
    expiry_date: Mapped[Optional[date]] = mapped_column(sa.Date, nullable=True)
    quantity: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    placed_seq: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    bin: Mapped[BinRow] = relationship(back_populates="contents")

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_bin_content_lines_qty_positive"),)
