# binalloc/models/enums.py
from __future__ import annotations

from enum import StrEnum


class BinStatus(StrEnum):
    """
    库位占用状态（只有两种，没有第三态）：

    - AVAILABLE  current_qty == 0
    - OCCUPIED   current_qty  > 0
    """

    AVAILABLE = "available"
    OCCUPIED = "occupied"


class OperationType(StrEnum):
    """操作历史（bin_operation_history.operation_type）。"""

    PUTAWAY = "PUTAWAY"
    PICK = "PICK"
    ROLLBACK = "ROLLBACK"


class AllocationType(StrEnum):
    """
    上架分配类型（写入计划行与历史，便于审计 / 分析）：

    - SAME_SKU_CONSOLIDATION  Pass 1：同 (sku, lot, expiry) 合并
    - NEW_PLACEMENT           Pass 2：空库位首次放置
    - MIXED_SKU_STORAGE       Pass 2：放入已有其它内容的库位（混放）
    """

    SAME_SKU_CONSOLIDATION = "SAME_SKU_CONSOLIDATION"
    NEW_PLACEMENT = "NEW_PLACEMENT"
    MIXED_SKU_STORAGE = "MIXED_SKU_STORAGE"


class PickState(StrEnum):
    """
    两阶段拣货状态机：

        CHECKING → ALL_AVAILABLE → EXECUTING → DONE
        CHECKING → SOME_UNAVAILABLE → REJECTED
    """

    CHECKING = "CHECKING"
    ALL_AVAILABLE = "ALL_AVAILABLE"
    SOME_UNAVAILABLE = "SOME_UNAVAILABLE"
    EXECUTING = "EXECUTING"
    DONE = "DONE"
    REJECTED = "REJECTED"


class EfficiencyRating(StrEnum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"
