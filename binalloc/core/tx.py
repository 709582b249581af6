# binalloc/core/tx.py
from __future__ import annotations

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession


@asynccontextmanager
async def tx_commit(session: AsyncSession):
    """
    Commit 事务：会话已在事务中（autobegin 读过数据）则复用并在结束时提交，
    否则正常 begin/commit。块内异常一律回滚。
    调用方（store）内部不得再自行 commit。
    """
    if session.in_transaction():
        try:
            yield
        except BaseException:
            await session.rollback()
            raise
        await session.commit()
        return
    async with session.begin():
        yield
