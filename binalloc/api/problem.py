# binalloc/api/problem.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, TypedDict

from fastapi import HTTPException

from binalloc.domain.errors import BinEngineError


class ProblemDetail(TypedDict, total=False):
    # 必填
    type: str  # validation|shortage|state|capacity
    # 可选：用于行内定位
    path: str  # e.g. lines[2]
    # 常用字段（按需）
    reason: str
    line_index: int
    sku_code: str
    bin_code: str
    lot_number: Optional[str]

    required_qty: int
    available_qty: int
    short_qty: int


class NextAction(TypedDict, total=False):
    action: str
    label: str


@dataclass(frozen=True)
class Problem:
    error_code: str
    message: str
    http_status: int
    context: Optional[Dict[str, Any]] = None
    details: Optional[List[ProblemDetail]] = None
    next_actions: Optional[List[NextAction]] = None
    trace_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error_code": self.error_code,
            "message": self.message,
            "http_status": int(self.http_status),
        }
        if self.context:
            out["context"] = self.context
        if self.details:
            out["details"] = self.details
        if self.next_actions:
            out["next_actions"] = self.next_actions
        if self.trace_id:
            out["trace_id"] = self.trace_id
        return out


def make_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[ProblemDetail]] = None,
    next_actions: Optional[Sequence[NextAction]] = None,
    trace_id: Optional[str] = None,
) -> Dict[str, Any]:
    p = Problem(
        error_code=str(error_code),
        message=str(message),
        http_status=int(status_code),
        context=context,
        details=list(details) if details else None,
        next_actions=list(next_actions) if next_actions else None,
        trace_id=trace_id,
    )
    return p.to_dict()


def raise_problem(
    *,
    status_code: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[ProblemDetail]] = None,
    next_actions: Optional[Sequence[NextAction]] = None,
    trace_id: Optional[str] = None,
) -> None:
    raise HTTPException(
        status_code=int(status_code),
        detail=make_problem(
            status_code=int(status_code),
            error_code=error_code,
            message=message,
            context=context,
            details=details,
            next_actions=next_actions,
            trace_id=trace_id,
        ),
    )


def problem_from_engine_error(
    exc: BinEngineError,
    *,
    context: Optional[Dict[str, Any]] = None,
    trace_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    引擎异常 → Problem：
    - error_code / http_status 取自异常类
    - 可重试（ResourceBusy）附带 retry 下一步动作
    """
    ctx: Dict[str, Any] = dict(context or {})
    ctx.update(exc.context)
    next_actions: List[NextAction] = []
    if exc.retryable:
        next_actions.append({"action": "retry", "label": "稍后重试"})
    return make_problem(
        status_code=exc.http_status,
        error_code=exc.error_code,
        message=exc.message,
        context=ctx,
        details=exc.details,
        next_actions=next_actions,
        trace_id=trace_id,
    )
