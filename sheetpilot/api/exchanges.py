from __future__ import annotations

import asyncio
import json
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from sheetpilot.deps import get_chat_session
from sheetpilot.errors import ExchangeFailure, ExchangeInProgress, SheetPilotApiError
from sheetpilot.observability.logging import get_runtime_logger
from sheetpilot.sse.event_bus import TERMINAL_EVENT_TYPES

router = APIRouter(prefix="/v1", tags=["exchanges"])
logger = get_runtime_logger()


class ExchangeRequest(BaseModel):
    text: str = Field(min_length=1)
    tagged_worksheets: list[str] = Field(default_factory=list)
    selected_range: str | None = None
    background: bool = False


async def stream_as_sse(event: dict[str, Any]) -> dict[str, str]:
    return {
        "event": event["type"],
        "data": json.dumps(event, ensure_ascii=False, default=str),
    }


@router.post("/exchanges")
async def create_exchange(payload: ExchangeRequest, session=Depends(get_chat_session)):
    if session.busy:
        raise ExchangeInProgress("Another exchange is still running in this session.")

    exchange_id = session.new_exchange_id()
    if payload.background:
        asyncio.create_task(_run_in_background(session, payload, exchange_id))
        return {"exchange_id": exchange_id, "state": "awaiting_model", "answer": None}

    answer = await session.send_exchange(
        payload.text,
        payload.tagged_worksheets,
        selected_range=payload.selected_range,
        exchange_id=exchange_id,
    )
    return {"exchange_id": exchange_id, "state": "done", "answer": answer}


async def _run_in_background(session, payload: ExchangeRequest, exchange_id: str) -> None:
    try:
        await session.send_exchange(
            payload.text,
            payload.tagged_worksheets,
            selected_range=payload.selected_range,
            exchange_id=exchange_id,
        )
    except ExchangeFailure as exc:
        logger.info(
            "background_exchange_failed",
            extra={"exchange_id": exchange_id, "outcome": "failed", "error_kind": exc.code},
        )
    except Exception:  # noqa: BLE001
        logger.exception("background_exchange_crashed", extra={"exchange_id": exchange_id})


@router.get("/exchanges/{exchange_id}/events")
async def stream_events(exchange_id: str, session=Depends(get_chat_session)):
    queue = session.bus.attach(exchange_id)
    historical_events = session.events_for(exchange_id)
    if historical_events is None:
        session.bus.detach(exchange_id, queue)
        raise SheetPilotApiError(
            code="E_EXCHANGE_NOT_FOUND",
            message="No exchange matches this id.",
            retryable=False,
            status_code=404,
            details={"exchange_id": exchange_id},
        )

    async def event_generator():
        last_seq = 0
        try:
            for event in historical_events:
                last_seq = event["seq"]
                yield await stream_as_sse(event)
                if event["type"] in TERMINAL_EVENT_TYPES:
                    return
            async for event in session.bus.drain(queue):
                if event["seq"] <= last_seq:
                    continue
                yield await stream_as_sse(event)
        finally:
            session.bus.detach(exchange_id, queue)

    return EventSourceResponse(event_generator())


@router.post("/exchanges/cancel")
async def cancel_exchange(session=Depends(get_chat_session)):
    exchange_id = session.current_exchange_id
    cancelled = session.cancel()
    return {"cancelled": cancelled, "exchange_id": exchange_id if cancelled else None}


@router.get("/history")
async def get_history(session=Depends(get_chat_session)):
    return {"messages": session.history.to_list()}


@router.delete("/history")
async def clear_history(session=Depends(get_chat_session)):
    if session.busy:
        raise ExchangeInProgress("Cannot clear history while an exchange is running.")
    session.reset()
    return {"ok": True}
