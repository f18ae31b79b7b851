from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from openai import AsyncOpenAI

from sheetpilot.agent.excel_tools import build_excel_registry
from sheetpilot.agent.provider_router import OPENAI_COMPATIBLE_PROVIDERS, build_provider
from sheetpilot.api import diagnostics, exchanges, operations, ops, proxy, tool_confirmations
from sheetpilot.config import load_settings
from sheetpilot.deps import set_dependencies
from sheetpilot.errors import ExchangeFailure, SheetPilotApiError, error_from_exception
from sheetpilot.observability.logging import get_runtime_logger
from sheetpilot.services.chat_service import ChatSession
from sheetpilot.services.confirmation_service import ConfirmationService
from sheetpilot.services.embedding_service import EmbeddingCache, EmbeddingClient, EmbeddingService
from sheetpilot.sse.event_bus import EventBus
from sheetpilot.trace import TRACE_HEADER, get_current_trace_id, normalize_trace_id, set_current_trace_id
from sheetpilot.workbook.memory import InMemoryWorkbook

settings = load_settings()
logger = get_runtime_logger()


def _openai_client() -> AsyncOpenAI | None:
    if settings.provider not in OPENAI_COMPATIBLE_PROVIDERS or not settings.api_key:
        return None
    return AsyncOpenAI(api_key=settings.api_key, base_url=settings.base_url)


@asynccontextmanager
async def lifespan(app: FastAPI):
    workbook = InMemoryWorkbook()
    registry = build_excel_registry(workbook)
    confirmation_service = ConfirmationService()
    openai_client = _openai_client()

    embedding_service = None
    if openai_client is not None:
        embedding_service = EmbeddingService(
            EmbeddingClient(settings.api_key, model=settings.embedding_model, client=openai_client),
            workbook,
            EmbeddingCache(ttl_seconds=settings.embedding_ttl_seconds),
        )

    chat_session = ChatSession(
        registry=registry,
        model=settings.model,
        provider_factory=lambda: build_provider(settings.provider, settings.api_key, settings.base_url),
        workbook=workbook,
        bus=EventBus(),
        confirmation_service=confirmation_service if settings.require_approval else None,
        approval_timeout_seconds=settings.approval_timeout_seconds,
        embedding_service=embedding_service,
        max_iterations=settings.max_iterations,
        streaming=settings.streaming,
    )
    set_dependencies(chat_session, confirmation_service, openai_client)
    logger.info(
        "runtime_started",
        extra={"operation": f"{settings.provider}:{settings.model}", "outcome": "ok"},
    )

    yield

    chat_session.cancel()
    if openai_client is not None:
        await openai_client.close()


app = FastAPI(title="SheetPilot Runtime", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def trace_middleware(request: Request, call_next):
    trace_id = normalize_trace_id(request.headers.get(TRACE_HEADER))
    request.state.trace_id = trace_id
    set_current_trace_id(trace_id)
    started = datetime.now(tz=timezone.utc)
    try:
        response = await call_next(request)
    except Exception as exc:  # noqa: BLE001
        status_code, payload = error_from_exception(exc, trace_id)
        response = JSONResponse(status_code=status_code, content=payload)
    duration_ms = int((datetime.now(tz=timezone.utc) - started).total_seconds() * 1000)
    logger.info(
        "http_request",
        extra={
            "trace_id": trace_id,
            "path": request.url.path,
            "method": request.method,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "outcome": "ok" if response.status_code < 400 else "error",
        },
    )
    response.headers[TRACE_HEADER] = trace_id
    return response


@app.exception_handler(Exception)
async def exception_handler(request: Request, exc: Exception):
    trace_id = str(getattr(request.state, "trace_id", get_current_trace_id()))
    status_code, payload = error_from_exception(exc, trace_id)
    response = JSONResponse(status_code=status_code, content=payload)
    response.headers[TRACE_HEADER] = trace_id
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return await exception_handler(request, exc)


@app.exception_handler(SheetPilotApiError)
async def api_error_handler(request: Request, exc: SheetPilotApiError):
    return await exception_handler(request, exc)


@app.exception_handler(ExchangeFailure)
async def exchange_failure_handler(request: Request, exc: ExchangeFailure):
    return await exception_handler(request, exc)


app.include_router(ops.router)
app.include_router(exchanges.router)
app.include_router(tool_confirmations.router)
app.include_router(operations.router)
app.include_router(diagnostics.router)
app.include_router(proxy.router)


def run() -> None:
    import uvicorn

    uvicorn.run("sheetpilot.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
