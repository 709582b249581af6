# binalloc/services/bin_store.py
from __future__ import annotations

from collections import OrderedDict
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from binalloc.domain.bin_state import Bin
from binalloc.domain.errors import BinConflict, BinNotFound
from binalloc.models.enums import OperationType
from binalloc.services.operation_journal import HistoryEntry, filter_entries

JsonLike = Dict[str, Any]


class BinStore(Protocol):
    """
    库位读写端口：

    - load_bins     按 sequence 排序返回库位（codes 为空 = 全部）；每次都是新对象
    - save_bins     回写变更库位 + 本次操作历史，原子提交
    - register_bins 登记新库位（配置侧）；编码重复 → BinConflict
    - list_history  按时间正序返回历史
    """

    async def load_bins(self, warehouse_id: int, codes: Optional[Iterable[str]] = None) -> List[Bin]: ...

    async def save_bins(
        self,
        warehouse_id: int,
        bins: Sequence[Bin],
        history: Sequence[HistoryEntry] = (),
    ) -> List[HistoryEntry]: ...

    async def register_bins(self, warehouse_id: int, bins: Sequence[Bin]) -> List[Bin]: ...

    async def list_history(
        self,
        warehouse_id: int,
        *,
        sku: Optional[str] = None,
        bin_code: Optional[str] = None,
        operation_type: Optional[OperationType] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[HistoryEntry]: ...


class InMemoryBinStore:
    """
    进程内存储（开发 / 测试）：按记录形态保存，读出时经 Bin.from_record 重建并校验，
    调用方拿到的永远是独立副本。
    """

    def __init__(self) -> None:
        self._bins: Dict[int, "OrderedDict[str, JsonLike]"] = {}
        self._history: Dict[int, List[HistoryEntry]] = {}
        self._next_id = 1

    async def load_bins(self, warehouse_id: int, codes: Optional[Iterable[str]] = None) -> List[Bin]:
        recs = self._bins.get(int(warehouse_id), OrderedDict())
        if codes is None:
            picked = list(recs.values())
        else:
            picked = [recs[c] for c in dict.fromkeys(codes) if c in recs]
        out = [Bin.from_record(r) for r in picked]
        return sorted(out, key=lambda b: (b.sequence, b.code))

    async def save_bins(
        self,
        warehouse_id: int,
        bins: Sequence[Bin],
        history: Sequence[HistoryEntry] = (),
    ) -> List[HistoryEntry]:
        wh = int(warehouse_id)
        recs = self._bins.get(wh, OrderedDict())
        missing = [b.code for b in bins if b.code not in recs]
        if missing:
            raise BinNotFound(
                f"库位不存在：{', '.join(missing)}",
                context={"warehouse_id": wh, "bin_codes": missing},
            )

        # 先全部序列化（失败则什么都不写），再一次性替换
        staged = {b.code: b.to_record() for b in bins}
        saved: List[HistoryEntry] = []
        for e in history:
            saved.append(replace(e, id=self._next_id))
            self._next_id += 1

        recs.update(staged)
        self._history.setdefault(wh, []).extend(saved)
        return saved

    async def register_bins(self, warehouse_id: int, bins: Sequence[Bin]) -> List[Bin]:
        wh = int(warehouse_id)
        recs = self._bins.setdefault(wh, OrderedDict())
        codes = [b.code for b in bins]
        dup = sorted({c for c in codes if c in recs or codes.count(c) > 1})
        if dup:
            raise BinConflict(
                f"库位编码已存在：{', '.join(dup)}",
                context={"warehouse_id": wh, "bin_codes": dup},
            )
        for b in bins:
            recs[b.code] = b.to_record()
        return await self.load_bins(wh, codes)

    async def list_history(
        self,
        warehouse_id: int,
        *,
        sku: Optional[str] = None,
        bin_code: Optional[str] = None,
        operation_type: Optional[OperationType] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[HistoryEntry]:
        return filter_entries(
            self._history.get(int(warehouse_id), []),
            sku=sku,
            bin_code=bin_code,
            operation_type=operation_type,
            since=since,
            until=until,
        )
