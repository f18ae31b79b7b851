from __future__ import annotations

import inspect
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence

from sheetpilot.agent.conversation import Conversation
from sheetpilot.agent.dispatcher import ToolDispatcher
from sheetpilot.agent.gate import ConfirmationGate, MutationGate
from sheetpilot.agent.loop import (
    DEFAULT_MAX_ITERATIONS,
    Exchange,
    ExchangeState,
    LoopCallbacks,
    run_exchange,
)
from sheetpilot.agent.messages import Message, ToolCall, ToolResult
from sheetpilot.agent.operations import OperationRegistry
from sheetpilot.agent.prompts import build_system_prompt
from sheetpilot.agent.providers.base import ProviderAdapter
from sheetpilot.errors import ExchangeCancelled, ExchangeInProgress, error_from_exception
from sheetpilot.observability.logging import get_runtime_logger
from sheetpilot.observability.metrics import get_runtime_metrics
from sheetpilot.observability.redaction import redact
from sheetpilot.services.confirmation_service import ConfirmationService
from sheetpilot.services.embedding_service import EmbeddingService, extract_worksheet_mentions
from sheetpilot.sse.event_bus import EventBus
from sheetpilot.trace import get_current_trace_id, set_current_exchange_id
from sheetpilot.workbook.base import Workbook

logger = get_runtime_logger()
metrics = get_runtime_metrics()

EventCallback = Callable[[dict[str, Any]], "Awaitable[None] | None"]

MAX_RETAINED_EXCHANGES = 50


class ChatSession:
    """One conversation with the assistant.

    Owns the history between exchanges and runs exchanges one at a time.
    ``cancel`` bumps the session generation: the exchange in flight stops at
    its next checkpoint and never commits its messages to history.
    """

    def __init__(
        self,
        *,
        registry: OperationRegistry,
        model: str,
        provider: ProviderAdapter | None = None,
        provider_factory: Callable[[], ProviderAdapter] | None = None,
        workbook: Workbook | None = None,
        bus: EventBus | None = None,
        gate: MutationGate | None = None,
        confirmation_service: ConfirmationService | None = None,
        approval_timeout_seconds: float = 600,
        embedding_service: EmbeddingService | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        streaming: bool = True,
    ) -> None:
        if provider is None and provider_factory is None:
            raise ValueError("ChatSession needs a provider or a provider_factory")
        self.model = model
        self.workbook = workbook
        self.bus = bus or EventBus()
        self.confirmation_service = confirmation_service
        self.embedding_service = embedding_service
        self.max_iterations = max_iterations
        self.streaming = streaming
        self._provider = provider
        self._provider_factory = provider_factory

        if gate is None and confirmation_service is not None:
            gate = ConfirmationGate(
                confirmation_service,
                timeout_seconds=approval_timeout_seconds,
                on_pending=self.notify_confirmation_pending,
            )
        self.dispatcher = ToolDispatcher(registry, gate)

        self.history = Conversation()
        self.current_exchange_id: str | None = None
        self._busy = False
        self._generation = 0
        self._events: OrderedDict[str, list[dict[str, Any]]] = OrderedDict()
        self._listeners: dict[str, EventCallback] = {}
        self._traces: dict[str, str] = {}

    @property
    def busy(self) -> bool:
        return self._busy

    def new_exchange_id(self) -> str:
        """Allocate an exchange id whose event log is open before the exchange starts."""
        exchange_id = f"ex_{uuid.uuid4().hex[:12]}"
        self._open_event_log(exchange_id)
        return exchange_id

    def provider(self) -> ProviderAdapter:
        if self._provider is None:
            self._provider = self._provider_factory()
        return self._provider

    async def send_exchange(
        self,
        user_text: str,
        tagged_worksheets: Sequence[str] = (),
        on_event: EventCallback | None = None,
        *,
        selected_range: str | None = None,
        exchange_id: str | None = None,
    ) -> str:
        """Run one exchange to completion and return the assistant's final answer.

        Raises ExchangeInProgress while another exchange is running, and the
        exchange's ExchangeFailure (transport, exhaustion, cancellation) when
        it ends in FAILED. History is only updated on success.
        """
        if self._busy:
            failure = ExchangeInProgress("Another exchange is still running in this session.")
            if exchange_id is not None and exchange_id in self._events:
                await self._fail(Exchange(id=exchange_id), failure)
            raise failure
        self._busy = True
        generation = self._generation
        exchange = Exchange(id=exchange_id or self.new_exchange_id())
        self.current_exchange_id = exchange.id
        self._traces[exchange.id] = get_current_trace_id()
        if exchange.id not in self._events:
            self._open_event_log(exchange.id)
        if on_event is not None:
            self._listeners[exchange.id] = on_event
        set_current_exchange_id(exchange.id)
        metrics.exchanges_total += 1

        try:
            await self.emit_event(exchange.id, "exchange_started", {"text": user_text})
            system_prompt = await self._system_prompt(user_text, tagged_worksheets, selected_range)
            conversation = self.history.append(Message(role="user", content=user_text))

            await run_exchange(
                provider=self.provider(),
                model=self.model,
                system_prompt=system_prompt,
                conversation=conversation,
                dispatcher=self.dispatcher,
                callbacks=self._callbacks(exchange.id),
                max_iterations=self.max_iterations,
                streaming=self.streaming,
                is_cancelled=lambda: self._generation != generation,
                exchange=exchange,
            )
            if self._generation != generation:
                raise ExchangeCancelled("Exchange was cancelled.")
        except Exception as exc:
            await self._fail(exchange, exc)
            raise
        finally:
            self._listeners.pop(exchange.id, None)
            if self.confirmation_service is not None:
                self.confirmation_service.forget(exchange.id)
            if self._generation == generation:
                self._busy = False

        self.history = exchange.conversation
        await self.emit_event(
            exchange.id,
            "done",
            {"status": ExchangeState.DONE.value, "answer": exchange.answer, "iterations": exchange.iteration},
        )
        return exchange.answer

    def cancel(self) -> bool:
        """Cancel the exchange in flight, if any. Returns whether one was running."""
        if not self._busy:
            return False
        self._generation += 1
        self._busy = False
        if self.current_exchange_id and self.confirmation_service is not None:
            self.confirmation_service.deny_all_pending(self.current_exchange_id)
        logger.info(
            "exchange_cancel_requested",
            extra={"exchange_id": self.current_exchange_id, "outcome": "cancelled"},
        )
        return True

    def reset(self) -> None:
        self.history = Conversation()

    def events_for(self, exchange_id: str) -> list[dict[str, Any]] | None:
        events = self._events.get(exchange_id)
        return list(events) if events is not None else None

    async def notify_confirmation_pending(
        self,
        exchange_id: str,
        call_id: str,
        operation_name: str,
        arguments: dict[str, Any],
    ) -> None:
        await self.emit_event(
            exchange_id,
            "confirmation_required",
            {"call_id": call_id, "operation": operation_name, "args": redact(arguments)},
        )

    async def emit_event(self, exchange_id: str, event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
        trace_id = self._traces.get(exchange_id) or get_current_trace_id()
        log = self._events.setdefault(exchange_id, [])
        event = {
            "event_id": str(uuid.uuid4()),
            "exchange_id": exchange_id,
            "trace_id": trace_id,
            "seq": len(log) + 1,
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "type": event_type,
            "payload": payload,
        }
        log.append(event)
        await self.bus.publish(exchange_id, event)
        listener = self._listeners.get(exchange_id)
        if listener is not None:
            result = listener(event)
            if inspect.isawaitable(result):
                await result
        return event

    def _open_event_log(self, exchange_id: str) -> None:
        self._events[exchange_id] = []
        while len(self._events) > MAX_RETAINED_EXCHANGES:
            stale, _ = self._events.popitem(last=False)
            self._traces.pop(stale, None)

    async def _system_prompt(
        self,
        user_text: str,
        tagged_worksheets: Sequence[str],
        selected_range: str | None,
    ) -> str:
        if self.workbook is None:
            return build_system_prompt(selected_range=selected_range, tagged_worksheets=list(tagged_worksheets))

        active = await self.workbook.get_active_worksheet_name()
        names = await self.workbook.get_worksheet_names()
        worksheets = list(dict.fromkeys([*tagged_worksheets, *extract_worksheet_mentions(user_text, names)]))
        if worksheets and self.embedding_service is not None:
            await self.embedding_service.embed_tagged_worksheets(worksheets)
        return build_system_prompt(
            active_worksheet=active,
            selected_range=selected_range,
            tagged_worksheets=worksheets,
        )

    def _callbacks(self, exchange_id: str) -> LoopCallbacks:
        async def on_text_delta(text: str) -> None:
            await self.emit_event(exchange_id, "text_delta", {"text": text})

        async def on_tool_call(call: ToolCall, mutating: bool) -> None:
            await self.emit_event(
                exchange_id,
                "tool_call",
                {
                    "call_id": call.id,
                    "operation": call.name,
                    "args": redact(_preview_arguments(call)),
                    "mutating": mutating,
                },
            )

        async def on_tool_result(result: ToolResult) -> None:
            payload: dict[str, Any] = {"call_id": result.tool_call_id, "ok": not result.is_error}
            if result.error is not None:
                payload["error"] = {"kind": result.error.kind, "message": result.error.message}
            else:
                payload["output"] = result.payload
            await self.emit_event(exchange_id, "tool_result", payload)

        async def on_state_change(state: ExchangeState) -> None:
            await self.emit_event(exchange_id, "state", {"state": state.value})

        return LoopCallbacks(
            on_text_delta=on_text_delta,
            on_tool_call=on_tool_call,
            on_tool_result=on_tool_result,
            on_state_change=on_state_change,
        )

    async def _fail(self, exchange: Exchange, exc: Exception) -> None:
        metrics.exchanges_failed_total += 1
        exchange.state = ExchangeState.FAILED
        trace_id = self._traces.get(exchange.id) or get_current_trace_id()
        if isinstance(exc, ExchangeCancelled):
            await self.emit_event(exchange.id, "cancelled", {"message": exc.message})
        else:
            _, error_payload = error_from_exception(exc, trace_id)
            await self.emit_event(exchange.id, "error", {"error": error_payload["error"]})
        await self.emit_event(
            exchange.id,
            "done",
            {"status": ExchangeState.FAILED.value, "message": str(exc), "iterations": exchange.iteration},
        )


def _preview_arguments(call: ToolCall) -> Any:
    parsed = call.parsed_arguments()
    if parsed is not None:
        return parsed
    return {"raw": call.raw_arguments[:200]}
