# binalloc/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from binalloc.api.routers.bins import router as bins_router
from binalloc.api.routers.health import router as health_router
from binalloc.api.routers.history import router as history_router
from binalloc.api.routers.holds import router as holds_router
from binalloc.api.routers.pick import router as pick_router
from binalloc.api.routers.putaway import router as putaway_router
from binalloc.api.routers.stock import router as stock_router
from binalloc.core.config import AppSettings, get_settings
from binalloc.core.logging import setup_logging
from binalloc.db.session import create_all, create_engine_for, create_session_maker
from binalloc.http_problem_handlers import register_exception_handlers
from binalloc.obs.metrics import PrometheusMiddleware
from binalloc.services.bin_engine import WarehouseBinEngine
from binalloc.services.bin_locks import BinHoldManager
from binalloc.services.bin_repository import SqlBinStore
from binalloc.services.bin_store import BinStore, InMemoryBinStore

logger = logging.getLogger("binalloc")


def build_engine(settings: AppSettings, store: BinStore) -> WarehouseBinEngine:
    return WarehouseBinEngine(
        store,
        holds=BinHoldManager(
            timeout=settings.BIN_LOCK_TIMEOUT_SECONDS,
            stale_after=settings.BIN_LOCK_STALE_SECONDS,
        ),
        require_full=settings.PUTAWAY_REQUIRE_FULL,
    )


def create_app(settings: Optional[AppSettings] = None, store: Optional[BinStore] = None) -> FastAPI:
    """
    应用工厂：

    - store 显式传入时直接使用（测试）
    - 否则按 STORE_BACKEND 选择 memory / sql；sql 模式启动时建表
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL, settings.JSON_LOG)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db_engine = None
        if app.state.engine is None:
            backend = settings.STORE_BACKEND.lower()
            if backend == "sql":
                db_engine = create_engine_for(settings.DATABASE_URL, echo=settings.SQL_ECHO)
                await create_all(db_engine)
                app.state.engine = build_engine(settings, SqlBinStore(create_session_maker(db_engine)))
            elif backend == "memory":
                app.state.engine = build_engine(settings, InMemoryBinStore())
            else:
                raise RuntimeError(f"unknown STORE_BACKEND: {settings.STORE_BACKEND!r}")
            logger.info("bin engine ready: env=%s store=%s", settings.ENV, backend)
        try:
            yield
        finally:
            if db_engine is not None:
                await db_engine.dispose()

    app = FastAPI(
        title="Bin Allocation Engine",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = build_engine(settings, store) if store is not None else None

    if settings.CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.CORS_ORIGINS),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(PrometheusMiddleware)
    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(bins_router)
    app.include_router(putaway_router)
    app.include_router(pick_router)
    app.include_router(history_router)
    app.include_router(holds_router)
    app.include_router(stock_router)

    return app


app = create_app()
