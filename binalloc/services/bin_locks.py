# binalloc/services/bin_locks.py
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

from binalloc.domain.errors import ResourceBusy
from binalloc.obs.metrics import hold_timeouts_total

logger = logging.getLogger("binalloc.holds")

HoldKey = Tuple[int, str]  # (warehouse_id, bin_code)


@dataclass
class HoldInfo:
    warehouse_id: int
    bin_code: str
    owner: str
    acquired_at: float

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.acquired_at

    def to_dict(self) -> Dict[str, object]:
        return {
            "warehouse_id": int(self.warehouse_id),
            "bin_code": self.bin_code,
            "owner": self.owner,
            "held_seconds": round(self.age(), 3),
        }


class BinHoldManager:
    """
    库位独占持有（进程内，单写者纪律）：

    - hold(wh, codes) 按 code 排序逐个加锁，避免交叉等待
    - 整体等待时限 timeout 秒；超时释放已拿到的锁并抛 ResourceBusy（可重试）
    - async with 退出时（正常 / 异常 / 取消）一律释放
    - held_bins / force_release 用于诊断与应急
    """

    def __init__(self, *, timeout: float = 5.0, stale_after: float = 600.0) -> None:
        self.timeout = float(timeout)
        self.stale_after = float(stale_after)
        self._locks: Dict[HoldKey, asyncio.Lock] = {}
        self._holders: Dict[HoldKey, HoldInfo] = {}

    def _lock_for(self, key: HoldKey) -> asyncio.Lock:
        lk = self._locks.get(key)
        if lk is None:
            lk = asyncio.Lock()
            self._locks[key] = lk
        return lk

    @asynccontextmanager
    async def hold(
        self,
        warehouse_id: int,
        bin_codes: Iterable[str],
        *,
        owner: str,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[List[str]]:
        codes = sorted(set(bin_codes))
        wait = self.timeout if timeout is None else float(timeout)
        acquired: List[HoldKey] = []
        try:
            await asyncio.wait_for(self._acquire_all(int(warehouse_id), codes, owner, acquired), timeout=wait)
        except asyncio.TimeoutError:
            busy = [self._holders[k].to_dict() for k in self._busy_keys(int(warehouse_id), codes, owner)]
            self._release(acquired, owner=owner)
            hold_timeouts_total.inc()
            logger.warning(
                "hold timeout: wh=%s owner=%s wait=%.2fs busy=%s",
                warehouse_id,
                owner,
                wait,
                [b["bin_code"] for b in busy],
            )
            raise ResourceBusy(
                "库位正被其它作业占用，请稍后重试",
                context={"warehouse_id": int(warehouse_id), "owner": owner, "timeout_seconds": wait},
                details=[
                    {
                        "type": "state",
                        "path": f"bins[{b['bin_code']}]",
                        "bin_code": b["bin_code"],
                        "reason": f"held_by:{b['owner']}",
                    }
                    for b in busy
                ],
            ) from None
        except BaseException:
            self._release(acquired, owner=owner)
            raise

        logger.debug("hold acquired: wh=%s owner=%s bins=%s", warehouse_id, owner, codes)
        try:
            yield codes
        finally:
            self._release(acquired, owner=owner)
            logger.debug("hold released: wh=%s owner=%s", warehouse_id, owner)

    async def _acquire_all(self, wh: int, codes: List[str], owner: str, acquired: List[HoldKey]) -> None:
        for code in codes:
            key = (wh, code)
            await self._lock_for(key).acquire()
            self._holders[key] = HoldInfo(warehouse_id=wh, bin_code=code, owner=owner, acquired_at=time.monotonic())
            acquired.append(key)

    def _busy_keys(self, wh: int, codes: List[str], owner: str) -> List[HoldKey]:
        out = []
        for code in codes:
            info = self._holders.get((wh, code))
            if info is not None and info.owner != owner:
                out.append((wh, code))
        return out

    def _release(self, keys: List[HoldKey], *, owner: Optional[str] = None) -> None:
        while keys:
            key = keys.pop()
            info = self._holders.get(key)
            # 已被 force_release 过（或已转手）的键不再重复释放
            if info is None or (owner is not None and info.owner != owner):
                continue
            del self._holders[key]
            lk = self._locks.get(key)
            if lk is not None and lk.locked():
                lk.release()

    # ---------------------------------------------------------------
    # 诊断 / 应急
    # ---------------------------------------------------------------
    def held_bins(self, warehouse_id: int) -> List[HoldInfo]:
        now = time.monotonic()
        out = [h for (wh, _), h in self._holders.items() if wh == int(warehouse_id)]
        for h in out:
            if h.age(now) > self.stale_after:
                logger.warning(
                    "stale hold: wh=%s bin=%s owner=%s held=%.0fs",
                    h.warehouse_id,
                    h.bin_code,
                    h.owner,
                    h.age(now),
                )
        return sorted(out, key=lambda h: h.bin_code)

    def is_held(self, warehouse_id: int, bin_code: str) -> bool:
        return (int(warehouse_id), bin_code) in self._holders

    def force_release(self, warehouse_id: int) -> int:
        """应急：强制释放某仓全部持有。返回释放数量。"""
        keys = [k for k in self._holders if k[0] == int(warehouse_id)]
        if keys:
            logger.warning(
                "force releasing %s holds for wh=%s: %s",
                len(keys),
                warehouse_id,
                [(k[1], self._holders[k].owner) for k in keys],
            )
        self._release(list(keys))
        return len(keys)
