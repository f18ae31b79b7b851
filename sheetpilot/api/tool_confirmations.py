from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from sheetpilot.deps import get_confirmation_service
from sheetpilot.observability.logging import get_runtime_logger
from sheetpilot.trace import get_current_trace_id

router = APIRouter(prefix="/v1", tags=["tool-confirmations"])
logger = get_runtime_logger()


class ToolConfirmationRequest(BaseModel):
    exchange_id: str
    call_id: str
    approved: bool


@router.post("/tool-confirmations")
async def create_tool_confirmation(
    payload: ToolConfirmationRequest,
    request: Request,
    confirmation_service=Depends(get_confirmation_service),
):
    await confirmation_service.resolve(payload.exchange_id, payload.call_id, payload.approved)
    logger.info(
        "tool_confirmation",
        extra={
            "trace_id": str(getattr(request.state, "trace_id", get_current_trace_id())),
            "exchange_id": payload.exchange_id,
            "tool_call_id": payload.call_id,
            "outcome": "approved" if payload.approved else "denied",
        },
    )
    return {"ok": True}


@router.get("/tool-confirmations")
async def list_pending_confirmations(confirmation_service=Depends(get_confirmation_service)):
    return {"pending": confirmation_service.pending()}
