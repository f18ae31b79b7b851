from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError

DEFAULT_INTERNAL_MESSAGE = "Internal server error"


@dataclass(slots=True)
class SheetPilotApiError(Exception):
    code: str
    message: str
    retryable: bool
    status_code: int
    details: dict[str, Any] | None = None
    cause: str | None = None


class ToolInvocationError(Exception):
    """A tool-level failure; the dispatcher turns it into a ToolResult error."""

    kind = "ExecutionFailed"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnknownOperation(ToolInvocationError):
    kind = "UnknownOperation"


class InvalidArguments(ToolInvocationError):
    kind = "InvalidArguments"


class MutationDenied(ToolInvocationError):
    kind = "MutationDenied"


class ExecutionFailed(ToolInvocationError):
    kind = "ExecutionFailed"


class ExchangeFailure(Exception):
    """Terminates an exchange in the FAILED state."""

    code = "E_INTERNAL"
    status_code = 500
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ModelTransportFailure(ExchangeFailure):
    code = "E_MODEL_TRANSPORT"
    status_code = 502
    retryable = True


class ProviderAuthFailure(ModelTransportFailure):
    code = "E_PROVIDER_AUTH"
    status_code = 401
    retryable = False


class ProviderRateLimited(ModelTransportFailure):
    code = "E_PROVIDER_RATE_LIMIT"
    status_code = 429
    retryable = True


class ProviderTimeout(ModelTransportFailure):
    code = "E_NETWORK_TIMEOUT"
    status_code = 503
    retryable = True


class LoopExhausted(ExchangeFailure):
    code = "E_LOOP_EXHAUSTED"


class ExchangeCancelled(ExchangeFailure):
    code = "E_EXCHANGE_CANCELLED"
    status_code = 409


class ExchangeInProgress(ExchangeFailure):
    code = "E_EXCHANGE_IN_PROGRESS"
    status_code = 409
    retryable = True


def build_sheetpilot_error(
    *,
    code: str,
    message: str,
    trace_id: str,
    retryable: bool,
    details: dict[str, Any] | None = None,
    cause: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "code": code,
        "message": message,
        "trace_id": trace_id,
        "retryable": retryable,
        "ts": datetime.now(tz=timezone.utc).isoformat(),
    }
    if details:
        payload["details"] = details
    if cause:
        payload["cause"] = cause
    return payload


def error_response(
    *,
    code: str,
    message: str,
    trace_id: str,
    retryable: bool,
    details: dict[str, Any] | None = None,
    cause: str | None = None,
) -> dict[str, Any]:
    return {
        "error": build_sheetpilot_error(
            code=code,
            message=message,
            trace_id=trace_id,
            retryable=retryable,
            details=details,
            cause=cause,
        )
    }


def error_from_exception(exc: Exception, trace_id: str) -> tuple[int, dict[str, Any]]:
    if isinstance(exc, SheetPilotApiError):
        return (
            exc.status_code,
            error_response(
                code=exc.code,
                message=exc.message,
                trace_id=trace_id,
                retryable=exc.retryable,
                details=exc.details,
                cause=exc.cause,
            ),
        )

    if isinstance(exc, ExchangeFailure):
        return (
            exc.status_code,
            error_response(
                code=exc.code,
                message=exc.message,
                trace_id=trace_id,
                retryable=exc.retryable,
                cause=exc.__class__.__name__,
            ),
        )

    if isinstance(exc, RequestValidationError):
        return (
            422,
            error_response(
                code="E_SCHEMA_INVALID",
                message="Request validation failed.",
                trace_id=trace_id,
                retryable=False,
                details={"errors": exc.errors()},
                cause="request_validation_error",
            ),
        )

    if isinstance(exc, HTTPException):
        retryable = exc.status_code >= 500
        code = "E_INTERNAL" if retryable else "E_SCHEMA_INVALID"
        return (
            exc.status_code,
            error_response(
                code=code,
                message=str(exc.detail),
                trace_id=trace_id,
                retryable=retryable,
                cause="http_exception",
            ),
        )

    message = str(exc)
    if "API key not found" in message:
        return (
            401,
            error_response(
                code="E_PROVIDER_AUTH",
                message="Provider credentials are not configured.",
                trace_id=trace_id,
                retryable=False,
                cause="provider_auth",
            ),
        )

    if isinstance(exc, (KeyError, ValueError, TypeError)):
        return (
            400,
            error_response(
                code="E_SCHEMA_INVALID",
                message="Invalid request or payload shape.",
                trace_id=trace_id,
                retryable=False,
                cause=exc.__class__.__name__,
            ),
        )

    return (
        500,
        error_response(
            code="E_INTERNAL",
            message=DEFAULT_INTERNAL_MESSAGE,
            trace_id=trace_id,
            retryable=False,
            cause=exc.__class__.__name__,
        ),
    )
