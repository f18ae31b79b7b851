from __future__ import annotations

import uuid
from contextvars import ContextVar

TRACE_HEADER = "X-Trace-Id"

_trace_id_var: ContextVar[str | None] = ContextVar("sheetpilot_trace_id", default=None)
_exchange_id_var: ContextVar[str] = ContextVar("sheetpilot_exchange_id", default="")


def generate_trace_id() -> str:
    return uuid.uuid4().hex


def normalize_trace_id(candidate: str | None) -> str:
    value = (candidate or "").strip()
    return value or generate_trace_id()


def set_current_trace_id(trace_id: str) -> None:
    _trace_id_var.set(trace_id)


def get_current_trace_id() -> str:
    return _trace_id_var.get() or generate_trace_id()


def set_current_exchange_id(exchange_id: str) -> None:
    normalized = exchange_id.strip() if isinstance(exchange_id, str) else ""
    _exchange_id_var.set(normalized)


def get_current_exchange_id() -> str:
    return _exchange_id_var.get()
