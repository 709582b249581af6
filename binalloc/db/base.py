# binalloc/db/base.py
from __future__ import annotations

import importlib
import logging

from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("binalloc.models")


class Base(DeclarativeBase):
    """全局唯一 ORM Base"""

    pass


_INITIALIZED: bool = False  # 防重复初始化

_MODEL_MODULES = (
    "binalloc.models.bin",
    "binalloc.models.operation_history",
)


def init_models(*, force: bool = False) -> None:
    """
    集中导入模型 + 固化关系映射（create_all 之前必须调用）。
    """
    global _INITIALIZED
    if _INITIALIZED and not force:
        log.debug("init_models() called again; already initialized, skipping.")
        return

    for mod in _MODEL_MODULES:
        importlib.import_module(mod)

    configure_mappers()
    _INITIALIZED = True
    log.info("ORM models initialized & mappers configured (loaded %d modules)", len(_MODEL_MODULES))
