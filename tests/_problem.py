# tests/_problem.py
from __future__ import annotations

from typing import Any, Dict


def as_problem(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    断言 API 错误响应是顶层 Problem 形状，并原样返回便于后续取字段。
    """
    assert "error_code" in payload and "message" in payload, payload
    assert "trace_id" in payload, payload
    return payload
