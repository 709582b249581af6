# binalloc/db/session.py
# 异步引擎 / 会话工厂 + 建表
from __future__ import annotations

import re
from typing import Any, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from binalloc.db.base import Base, init_models


# ---- DSN 归一：sqlite → aiosqlite，postgres(+*) → psycopg ----
def normalize_async_dsn(url: str) -> str:
    url = (url or "").strip()
    # 有些环境会把值写成 '"sqlite+aiosqlite:///..."'，统一剥掉两侧引号
    if len(url) >= 2 and url[0] == url[-1] and url[0] in ("'", '"'):
        url = url[1:-1].strip()
    if not url:
        return "sqlite+aiosqlite:///./binalloc.db"
    if url.startswith("sqlite://") and not url.startswith("sqlite+aiosqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://") :]
    if url.startswith("postgresql+asyncpg://") or url.startswith("postgres+asyncpg://"):
        return re.sub(r"^postgres(?:ql)?\+asyncpg://", "postgresql+psycopg://", url)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _connect_args_for(url_str: str) -> Dict[str, Any]:
    backend = make_url(url_str).get_backend_name()
    if backend.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def create_engine_for(url: str, *, echo: bool = False) -> AsyncEngine:
    dsn = normalize_async_dsn(url)
    kwargs: Dict[str, Any] = {"echo": echo, "connect_args": _connect_args_for(dsn)}
    if make_url(dsn).get_backend_name().startswith("postgresql"):
        kwargs["pool_pre_ping"] = True
    return create_async_engine(dsn, **kwargs)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """开发 / 测试用建表（生产请走迁移）。"""
    init_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
