# binalloc/api/deps.py
from __future__ import annotations

from fastapi import Request

from binalloc.core.config import AppSettings
from binalloc.services.bin_engine import WarehouseBinEngine


def get_engine(request: Request) -> WarehouseBinEngine:
    """用法：engine: WarehouseBinEngine = Depends(get_engine)"""
    return request.app.state.engine


def get_app_settings(request: Request) -> AppSettings:
    return request.app.state.settings
