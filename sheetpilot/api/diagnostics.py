from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends

from sheetpilot.config import load_settings
from sheetpilot.deps import get_chat_session, get_confirmation_service
from sheetpilot.observability.metrics import get_runtime_metrics
from sheetpilot.observability.redaction import redact

router = APIRouter(prefix="/v1", tags=["diagnostics"])


@router.get("/diagnostics")
async def diagnostics(
    session=Depends(get_chat_session),
    confirmation_service=Depends(get_confirmation_service),
):
    return {
        "settings": redact(asdict(load_settings())),
        "metrics": get_runtime_metrics().snapshot(),
        "session": {
            "busy": session.busy,
            "current_exchange_id": session.current_exchange_id,
            "history_length": len(session.history),
            "operations": session.dispatcher.registry.names(),
        },
        "pending_confirmations": confirmation_service.pending(),
    }
