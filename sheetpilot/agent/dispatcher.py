"""Tool dispatch: lookup -> validate -> gate -> execute -> wrap.

``dispatch`` never raises for a tool-level failure. Unknown operations,
invalid arguments, gate denials and executor exceptions all come back as a
ToolResult carrying a ToolError so the run loop can feed them to the model.
"""
from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any

from sheetpilot.agent.gate import MutationGate
from sheetpilot.agent.messages import ToolCall, ToolResult
from sheetpilot.agent.operations import Operation, OperationRegistry
from sheetpilot.agent.schema import validate
from sheetpilot.errors import (
    ExecutionFailed,
    MutationDenied,
    ToolInvocationError,
    UnknownOperation,
)
from sheetpilot.observability.logging import get_runtime_logger
from sheetpilot.observability.metrics import get_runtime_metrics
from sheetpilot.observability.redaction import redact

logger = get_runtime_logger()
metrics = get_runtime_metrics()


class ToolDispatcher:
    def __init__(self, registry: OperationRegistry, gate: MutationGate | None = None) -> None:
        self.registry = registry
        self.gate = gate or MutationGate()
        # Executors touch a shared document; only one may run at a time.
        self._execution_lock = asyncio.Lock()

    def reject(self, tool_call: ToolCall, error: ToolInvocationError) -> ToolResult:
        """Build the error result for a call that never reached dispatch."""
        metrics.increment_tool_error(error.kind)
        return ToolResult.failure(tool_call.id, error.kind, error.message)

    async def dispatch(self, tool_call: ToolCall) -> ToolResult:
        started = time.perf_counter()
        metrics.increment_tool_call(tool_call.name)
        try:
            payload = await self._run(tool_call)
        except ToolInvocationError as exc:
            metrics.increment_tool_error(exc.kind)
            logger.info(
                "tool_dispatch",
                extra={
                    "tool_call_id": tool_call.id,
                    "operation": tool_call.name,
                    "outcome": "error",
                    "error_kind": exc.kind,
                    "duration_ms": _elapsed_ms(started),
                },
            )
            return ToolResult.failure(tool_call.id, exc.kind, exc.message)

        logger.info(
            "tool_dispatch",
            extra={
                "tool_call_id": tool_call.id,
                "operation": tool_call.name,
                "outcome": "ok",
                "duration_ms": _elapsed_ms(started),
            },
        )
        return ToolResult.success(tool_call.id, payload)

    async def _run(self, tool_call: ToolCall) -> Any:
        operation = self.registry.lookup(tool_call.name)
        if operation is None:
            raise UnknownOperation(f"Unknown operation: {tool_call.name}")

        arguments = validate(operation.argument_schema, tool_call.raw_arguments)

        if operation.mutating:
            await self._authorize(operation, arguments, tool_call.id)

        return await self._execute(operation, arguments)

    async def _authorize(self, operation: Operation, arguments: dict[str, Any], tool_call_id: str) -> None:
        try:
            decision = await self.gate.check(operation.name, arguments, tool_call_id=tool_call_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "mutation_gate_error",
                extra={"tool_call_id": tool_call_id, "operation": operation.name, "outcome": "denied"},
                exc_info=True,
            )
            raise MutationDenied(f"Approval check failed: {exc}") from exc
        if not decision.allowed:
            logger.info(
                "mutation_denied",
                extra={
                    "tool_call_id": tool_call_id,
                    "operation": operation.name,
                    "outcome": "denied",
                    "args": redact(arguments),
                },
            )
            raise MutationDenied(decision.reason)

    async def _execute(self, operation: Operation, arguments: dict[str, Any]) -> Any:
        async with self._execution_lock:
            try:
                if inspect.iscoroutinefunction(operation.executor):
                    return await operation.executor(**arguments)
                result = await asyncio.to_thread(operation.executor, **arguments)
                if inspect.isawaitable(result):
                    result = await result
                return result
            except Exception as exc:  # noqa: BLE001
                message = str(exc) or exc.__class__.__name__
                raise ExecutionFailed(message) from exc


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
