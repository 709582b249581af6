# tests/conftest.py
from __future__ import annotations

import os
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# ============================================================
# 在 import binalloc.main 之前固定后端，避免读到本地 .env 的 sql 配置
# ============================================================
os.environ["STORE_BACKEND"] = "memory"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from binalloc.core.config import AppSettings  # noqa: E402
from binalloc.db.session import create_all  # noqa: E402
from binalloc.main import create_app  # noqa: E402
from binalloc.services.bin_engine import WarehouseBinEngine  # noqa: E402
from binalloc.services.bin_locks import BinHoldManager  # noqa: E402
from binalloc.services.bin_repository import SqlBinStore  # noqa: E402
from binalloc.services.bin_store import InMemoryBinStore  # noqa: E402


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        ENV="test",
        STORE_BACKEND="memory",
        LOG_LEVEL="WARNING",
        BIN_LOCK_TIMEOUT_SECONDS=0.2,
    )


@pytest.fixture
def memory_store() -> InMemoryBinStore:
    return InMemoryBinStore()


@pytest.fixture
def engine(memory_store: InMemoryBinStore) -> WarehouseBinEngine:
    return WarehouseBinEngine(memory_store, holds=BinHoldManager(timeout=0.2))


# =========================================
# SQL 存储：每用例独立的内存 SQLite（StaticPool 共享同一连接）
# =========================================
@pytest_asyncio.fixture
async def sql_engine() -> AsyncGenerator[AsyncEngine, None]:
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_all(eng)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def sql_store(sql_engine: AsyncEngine) -> SqlBinStore:
    return SqlBinStore(async_sessionmaker(sql_engine, class_=AsyncSession, expire_on_commit=False))


# =========================================
# HTTP：httpx + ASGITransport（不走 lifespan，store 显式注入）
# =========================================
@pytest.fixture
def app(settings: AppSettings, memory_store: InMemoryBinStore) -> FastAPI:
    return create_app(settings, store=memory_store)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
