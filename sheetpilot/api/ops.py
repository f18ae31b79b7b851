from __future__ import annotations

from fastapi import APIRouter

from sheetpilot.config import load_settings
from sheetpilot.observability.metrics import get_runtime_metrics

RUNTIME_VERSION = "0.1.0"

router = APIRouter(tags=["ops"])
settings = load_settings()


@router.get("/health")
async def health():
    return {
        "ok": True,
        "version": RUNTIME_VERSION,
        "provider": settings.provider,
        "model": settings.model,
        "runtime_status": "ok",
    }


@router.get("/v1/metrics")
async def metrics():
    return get_runtime_metrics().snapshot()
