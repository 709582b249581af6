# binalloc/domain/errors.py
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence


class BinEngineError(Exception):
    """
    引擎内异常基类（HTTP 层统一翻译为 Problem 形状）：

    - error_code  : 机器可读错误码
    - http_status : 对外映射的状态码
    - retryable   : 是否允许调用方直接重试
    - context     : 定位信息（warehouse_id / bin_code / sku ...）
    - details     : 行级明细（与 api.problem.ProblemDetail 同形）
    """

    error_code = "bin_engine_error"
    http_status = 500
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        context: Optional[Dict[str, Any]] = None,
        details: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})
        self.details: List[Dict[str, Any]] = list(details or [])


class BinNotFound(BinEngineError):
    error_code = "bin_not_found"
    http_status = 404


class BinConflict(BinEngineError):
    """库位编码重复登记。"""

    error_code = "bin_code_conflict"
    http_status = 409


class CapacityExceeded(BinEngineError):
    """超出容量：变更前即拒绝，库位状态不动。"""

    error_code = "capacity_exceeded"
    http_status = 409


class InvariantViolation(BinEngineError):
    """
    内部一致性故障（库位不变量任一不成立）。

    不是业务短缺：说明算法缺陷或并发纪律被破坏。整单中止，不落任何部分状态。
    """

    error_code = "bin_invariant_violation"
    http_status = 500


class PickConsistencyFault(BinEngineError):
    """Phase 2 无法扣出 Phase 1 承诺的数量（两阶段之间状态漂移）。"""

    error_code = "pick_consistency_fault"
    http_status = 500

    def __init__(
        self,
        message: str,
        *,
        line_index: int,
        sku: str,
        expected_qty: int,
        actual_qty: int,
        applied_lines: Sequence[int] = (),
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        ctx = dict(context or {})
        ctx.update(
            {
                "line_index": int(line_index),
                "sku": sku,
                "expected_qty": int(expected_qty),
                "actual_qty": int(actual_qty),
                "applied_lines": [int(i) for i in applied_lines],
            }
        )
        super().__init__(
            message,
            context=ctx,
            details=[
                {
                    "type": "state",
                    "path": f"lines[{int(line_index)}]",
                    "sku_code": sku,
                    "required_qty": int(expected_qty),
                    "available_qty": int(actual_qty),
                    "short_qty": max(0, int(expected_qty) - int(actual_qty)),
                    "reason": "phase_drift",
                }
            ],
        )
        self.line_index = int(line_index)
        self.sku = sku
        self.expected_qty = int(expected_qty)
        self.actual_qty = int(actual_qty)
        self.applied_lines = [int(i) for i in applied_lines]


class HistoryEntryNotFound(BinEngineError):
    error_code = "history_entry_not_found"
    http_status = 404


class RollbackRejected(BinEngineError):
    """历史行无法撤销（已撤销 / 库存已被后续作业消耗 / 无处放回），库位状态不动。"""

    error_code = "rollback_rejected"
    http_status = 409


class ResourceBusy(BinEngineError):
    """限时内拿不到库位独占权；瞬时冲突，可重试。"""

    error_code = "resource_busy"
    http_status = 423
    retryable = True
