# binalloc/http_problem_handlers.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from binalloc.api.problem import make_problem, problem_from_engine_error
from binalloc.domain.errors import BinEngineError

logger = logging.getLogger("binalloc")


def _new_trace_id() -> str:
    return f"t_{uuid.uuid4().hex[:12]}"


def _req_ctx(req: Request) -> Dict[str, Any]:
    return {"path": getattr(req.url, "path", ""), "method": req.method}


def _problem_from_http_exc(req: Request, exc: HTTPException) -> Dict[str, Any]:
    """
    统一将 HTTPException.detail 翻译为 Problem 形状：
    - {"error_code","message",...}（已是 Problem，补齐 trace_id / context）
    - 其它（str / None）兜底为 state
    """
    status_code = int(exc.status_code)
    trace_id = _new_trace_id()
    ctx = _req_ctx(req)

    d = exc.detail

    if isinstance(d, dict) and "error_code" in d and "message" in d:
        out = dict(d)
        out.setdefault("http_status", status_code)
        out.setdefault("trace_id", trace_id)
        if isinstance(out.get("context"), dict):
            merged = dict(ctx)
            merged.update(out["context"])
            out["context"] = merged
        else:
            out["context"] = ctx
        return out

    msg = str(d) if d is not None else "请求被拒绝"
    return make_problem(
        status_code=status_code,
        error_code="http_error",
        message=msg,
        context=ctx,
        details=[{"type": "state", "reason": msg}],
        trace_id=trace_id,
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(Exception)
    async def _unhandled_exc(req: Request, exc: Exception):
        trace_id = _new_trace_id()
        logger.exception("UNHANDLED_EXC[%s]: %s", trace_id, exc)
        content = make_problem(
            status_code=500,
            error_code="internal_error",
            message="系统异常，请稍后重试",
            context=_req_ctx(req),
            trace_id=trace_id,
        )
        return JSONResponse(status_code=500, content=content)

    @app.exception_handler(BinEngineError)
    async def _engine_exc(req: Request, exc: BinEngineError):
        trace_id = _new_trace_id()
        if exc.http_status >= 500:
            logger.error("ENGINE_FAULT[%s] %s: %s context=%s", trace_id, exc.error_code, exc.message, exc.context)
        else:
            logger.info("engine error[%s] %s: %s", trace_id, exc.error_code, exc.message)
        content = problem_from_engine_error(exc, context=_req_ctx(req), trace_id=trace_id)
        return JSONResponse(status_code=int(exc.http_status), content=content)

    @app.exception_handler(ValueError)
    async def _value_exc(req: Request, exc: ValueError):
        msg = str(exc) or "请求参数不合法"
        content = make_problem(
            status_code=422,
            error_code="invalid_request",
            message=msg,
            context=_req_ctx(req),
            details=[{"type": "validation", "reason": msg}],
            trace_id=_new_trace_id(),
        )
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(RequestValidationError)
    async def _validation_exc(req: Request, exc: RequestValidationError):
        raw = exc.errors()
        details: List[Dict[str, Any]] = []
        for i, e in enumerate(raw):
            if not isinstance(e, dict):
                continue
            loc = ".".join(str(p) for p in e.get("loc", ()) if p != "body")
            details.append(
                {
                    "type": "validation",
                    "path": loc or f"validation[{i}]",
                    "reason": str(e.get("msg") or e.get("type") or "invalid"),
                }
            )

        content = make_problem(
            status_code=422,
            error_code="request_validation_error",
            message="请求参数不合法",
            context=_req_ctx(req),
            details=details,
            trace_id=_new_trace_id(),
        )
        return JSONResponse(status_code=422, content=content)

    @app.exception_handler(HTTPException)
    async def _http_exc(req: Request, exc: HTTPException):
        content = _problem_from_http_exc(req, exc)
        return JSONResponse(status_code=int(exc.status_code), content=content)
