# binalloc/api/routers/health.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from binalloc.api.deps import get_app_settings
from binalloc.core.config import AppSettings
from binalloc.obs.metrics import metrics_response

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(settings: AppSettings = Depends(get_app_settings)):
    return {"ok": True, "env": settings.ENV, "store": settings.STORE_BACKEND}


@router.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()
