"""
loop.py — Agent run loop

Explicit while-loop over a state enum: the model is consulted, the first
requested tool call is dispatched, its result is fed back, and the loop
repeats until the model answers without requesting a tool or the iteration
bound is hit. All side effects go through the injected dispatcher and
callbacks.
"""
from __future__ import annotations

import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from sheetpilot.agent.conversation import Conversation
from sheetpilot.agent.dispatcher import ToolDispatcher
from sheetpilot.agent.messages import ChatResponse, Message, ToolCall, ToolResult
from sheetpilot.agent.providers.base import ChatRequest, ProviderAdapter
from sheetpilot.agent.stream import StreamAssembler
from sheetpilot.errors import (
    ExchangeCancelled,
    ExchangeFailure,
    InvalidArguments,
    LoopExhausted,
    ModelTransportFailure,
)
from sheetpilot.observability.logging import get_runtime_logger
from sheetpilot.observability.metrics import get_runtime_metrics

logger = logging.getLogger(__name__)
runtime_logger = get_runtime_logger()
metrics = get_runtime_metrics()

DEFAULT_MAX_ITERATIONS = 25


class ExchangeState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOL = "executing_tool"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class LoopCallbacks:
    on_text_delta: Callable[[str], Awaitable[None] | None] | None = None
    on_tool_call: Callable[[ToolCall, bool], Awaitable[None] | None] | None = None
    on_tool_result: Callable[[ToolResult], Awaitable[None] | None] | None = None
    on_state_change: Callable[[ExchangeState], Awaitable[None] | None] | None = None


@dataclass(slots=True)
class Exchange:
    """One user request through to a final answer."""

    id: str = field(default_factory=lambda: f"ex_{uuid.uuid4().hex[:12]}")
    state: ExchangeState = ExchangeState.AWAITING_MODEL
    iteration: int = 0
    conversation: Conversation = field(default_factory=Conversation)
    tool_results: list[ToolResult] = field(default_factory=list)
    answer: str = ""
    failure: ExchangeFailure | None = None


async def run_exchange(
    *,
    provider: ProviderAdapter,
    model: str,
    system_prompt: str,
    conversation: Conversation,
    dispatcher: ToolDispatcher,
    callbacks: LoopCallbacks | None = None,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    streaming: bool = True,
    is_cancelled: Callable[[], bool] | None = None,
    exchange: Exchange | None = None,
    max_tokens: int = 4096,
) -> Exchange:
    """
    Drive one exchange until the model stops requesting tools.

    Args:
        provider: Model provider adapter.
        model: Model identifier string.
        system_prompt: System prompt for the model.
        conversation: History snapshot ending with the user's message.
        dispatcher: Runs validated tool calls against the registry.
        callbacks: Optional event hooks (sync or async).
        max_iterations: Upper bound on model calls for this exchange.
        streaming: Consume the provider's event stream instead of chat().
        is_cancelled: Checked before every model call and every dispatch.
        exchange: Pre-created exchange record to fill in.

    Returns:
        The exchange in the DONE state, with the final conversation snapshot.

    Raises:
        ModelTransportFailure, LoopExhausted, ExchangeCancelled; the
        exchange is marked FAILED before the error propagates.
    """
    cb = callbacks or LoopCallbacks()
    ex = exchange or Exchange()
    ex.conversation = conversation
    cancelled = is_cancelled or (lambda: False)
    tool_schemas = dispatcher.registry.to_schemas()

    try:
        while True:
            if ex.iteration >= max_iterations:
                raise LoopExhausted(
                    f"Exchange stopped after {max_iterations} model calls without a final answer."
                )
            _ensure_not_cancelled(cancelled)
            await _set_state(ex, cb, ExchangeState.AWAITING_MODEL)
            ex.iteration += 1

            request = ChatRequest(
                model=model,
                system_prompt=system_prompt,
                messages=list(ex.conversation),
                tools=tool_schemas,
                max_tokens=max_tokens,
                temperature=0.0,
                parallel_tool_calls=False,
            )
            logger.debug(
                "run_exchange iteration=%d messages=%d", ex.iteration, len(ex.conversation)
            )
            response = await _consult_model(provider, request, cb, cancelled, streaming)

            if not response.tool_calls:
                # An empty assistant turn is rejected by both vendors on replay.
                if response.text:
                    ex.conversation = ex.conversation.append(
                        Message(role="assistant", content=response.text)
                    )
                ex.answer = response.text
                await _set_state(ex, cb, ExchangeState.DONE)
                runtime_logger.info(
                    "exchange_done",
                    extra={"exchange_id": ex.id, "iteration": ex.iteration, "outcome": "done"},
                )
                return ex

            # Sequential semantics: only the first requested call runs this turn.
            call = response.tool_calls[0]
            if len(response.tool_calls) > 1:
                logger.debug(
                    "dropping %d extra tool calls after %s",
                    len(response.tool_calls) - 1,
                    call.name,
                )
            call = _with_unique_id(call, ex.conversation)
            ex.conversation = ex.conversation.append(
                Message(role="assistant", content=response.text, tool_calls=(call,))
            )

            _ensure_not_cancelled(cancelled)
            await _set_state(ex, cb, ExchangeState.EXECUTING_TOOL)
            result = await _run_tool_call(dispatcher, call, cb)

            ex.tool_results.append(result)
            ex.conversation = ex.conversation.append(Message.from_tool_result(result))
            if cb.on_tool_result:
                await _call_maybe_async(cb.on_tool_result, result)
    except ExchangeFailure as exc:
        ex.failure = exc
        ex.state = ExchangeState.FAILED
        runtime_logger.warning(
            "exchange_failed",
            extra={
                "exchange_id": ex.id,
                "iteration": ex.iteration,
                "outcome": "failed",
                "error_kind": exc.code,
            },
        )
        if cb.on_state_change:
            await _call_maybe_async(cb.on_state_change, ExchangeState.FAILED)
        raise
    except Exception as exc:
        ex.state = ExchangeState.FAILED
        runtime_logger.error(
            "exchange_failed",
            extra={
                "exchange_id": ex.id,
                "iteration": ex.iteration,
                "outcome": "failed",
                "error_kind": exc.__class__.__name__,
            },
        )
        if cb.on_state_change:
            await _call_maybe_async(cb.on_state_change, ExchangeState.FAILED)
        raise


def _with_unique_id(call: ToolCall, conversation: Conversation) -> ToolCall:
    used = {tc.id for message in conversation.current_exchange() for tc in message.tool_calls}
    if call.id not in used:
        return call
    fresh = f"call_{uuid.uuid4().hex[:8]}"
    logger.debug("tool call id %s reused by model; replaced with %s", call.id, fresh)
    return ToolCall(id=fresh, name=call.name, raw_arguments=call.raw_arguments)


async def _run_tool_call(dispatcher: ToolDispatcher, call: ToolCall, cb: LoopCallbacks) -> ToolResult:
    operation = dispatcher.registry.lookup(call.name)
    mutating = bool(operation and operation.mutating)
    if cb.on_tool_call:
        await _call_maybe_async(cb.on_tool_call, call, mutating)

    if call.parsed_arguments() is None:
        return dispatcher.reject(
            call,
            InvalidArguments(f"Arguments for {call.name} are not a complete JSON object."),
        )
    return await dispatcher.dispatch(call)


async def _consult_model(
    provider: ProviderAdapter,
    request: ChatRequest,
    cb: LoopCallbacks,
    cancelled: Callable[[], bool],
    streaming: bool,
) -> ChatResponse:
    metrics.model_calls_total += 1
    started = time.perf_counter()
    if not streaming:
        try:
            response = await provider.chat(request)
        except ExchangeFailure:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ModelTransportFailure(f"Model request failed: {exc}") from exc
        if response.text and cb.on_text_delta:
            await _call_maybe_async(cb.on_text_delta, response.text)
    else:
        response = await _consume_stream(provider, request, cb, cancelled)

    logger.debug(
        "model call finished stop_reason=%s tool_calls=%d duration_ms=%d",
        response.stop_reason,
        len(response.tool_calls),
        int((time.perf_counter() - started) * 1000),
    )
    return response


async def _consume_stream(
    provider: ProviderAdapter,
    request: ChatRequest,
    cb: LoopCallbacks,
    cancelled: Callable[[], bool],
) -> ChatResponse:
    assembler = StreamAssembler()
    stream = provider.chat_stream(request)
    try:
        while True:
            try:
                event = await stream.__anext__()
            except StopAsyncIteration:
                break
            except ExchangeFailure:
                raise
            except Exception as exc:  # noqa: BLE001
                raise ModelTransportFailure(f"Model stream failed: {exc}") from exc

            delta = assembler.feed(event)
            if delta and cb.on_text_delta:
                await _call_maybe_async(cb.on_text_delta, delta)
            _ensure_not_cancelled(cancelled)
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()

    if not assembler.has_output:
        raise ModelTransportFailure("Model stream ended without any data.")
    return assembler.finish()


def _ensure_not_cancelled(cancelled: Callable[[], bool]) -> None:
    if cancelled():
        raise ExchangeCancelled("Exchange was cancelled.")


async def _set_state(ex: Exchange, cb: LoopCallbacks, state: ExchangeState) -> None:
    if ex.state == state:
        return
    ex.state = state
    if cb.on_state_change:
        await _call_maybe_async(cb.on_state_change, state)


async def _call_maybe_async(fn: Callable, *args):
    result = fn(*args)
    if inspect.isawaitable(result):
        return await result
    return result
