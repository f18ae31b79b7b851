from __future__ import annotations

import asyncio
import json

import pytest

from sheetpilot.agent.excel_tools import build_excel_registry
from sheetpilot.agent.messages import ChatResponse, ToolCall
from sheetpilot.agent.providers.base import ChatRequest, ProviderAdapter
from sheetpilot.errors import ExchangeCancelled, ExchangeInProgress, ModelTransportFailure
from sheetpilot.observability.metrics import get_runtime_metrics
from sheetpilot.services.chat_service import ChatSession
from sheetpilot.services.confirmation_service import ConfirmationService
from sheetpilot.workbook.memory import InMemoryWorkbook


class ScriptedProvider(ProviderAdapter):
    def __init__(self, responses: list[ChatResponse]) -> None:
        self._responses = list(responses)
        self.requests: list[ChatRequest] = []

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        return self._responses.pop(0)


class BlockingProvider(ProviderAdapter):
    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.started.set()
        await self.release.wait()
        return ChatResponse(stop_reason="end_turn", text="too late")


class EmptyStreamProvider(ProviderAdapter):
    async def chat(self, request: ChatRequest) -> ChatResponse:
        raise AssertionError("unused")

    async def chat_stream(self, request: ChatRequest):
        return
        yield


def _write_a1() -> ChatResponse:
    call = ToolCall(id="call_1", name="write_to_excel", raw_arguments=json.dumps({"startCell": "A1", "values": [[5]]}))
    return ChatResponse(stop_reason="tool_use", text="", tool_calls=[call])


def _session(provider: ProviderAdapter | None = None, workbook: InMemoryWorkbook | None = None, **kwargs) -> ChatSession:
    workbook = workbook or InMemoryWorkbook()
    if provider is not None:
        kwargs["provider"] = provider
    return ChatSession(registry=build_excel_registry(workbook), model="test-model", workbook=workbook, **kwargs)


def test_session_requires_a_provider_source():
    with pytest.raises(ValueError):
        ChatSession(registry=build_excel_registry(InMemoryWorkbook()), model="m")


def test_successful_exchange_commits_history_and_emits_events():
    workbook = InMemoryWorkbook()
    session = _session(ScriptedProvider([_write_a1(), ChatResponse(stop_reason="end_turn", text="Done.")]), workbook)
    received: list[dict] = []

    answer = asyncio.run(session.send_exchange("Put 5 in A1", on_event=received.append, exchange_id=None))

    assert answer == "Done."
    assert [m.role for m in session.history] == ["user", "assistant", "tool", "assistant"]
    events = session.events_for(session.current_exchange_id)
    assert [event["type"] for event in events] == [
        "exchange_started",
        "state",
        "tool_call",
        "tool_result",
        "state",
        "text_delta",
        "state",
        "done",
    ]
    assert [event["seq"] for event in events] == list(range(1, 9))
    assert events[2]["payload"] == {
        "call_id": "call_1",
        "operation": "write_to_excel",
        "args": {"startCell": "A1", "values": [[5]]},
        "mutating": True,
    }
    assert events[3]["payload"] == {"call_id": "call_1", "ok": True, "output": "A1:A1"}
    assert events[-1]["payload"] == {"status": "done", "answer": "Done.", "iterations": 2}
    assert len({event["trace_id"] for event in events}) == 1
    assert [event["type"] for event in received] == [event["type"] for event in events]
    assert not session.busy
    assert get_runtime_metrics().exchanges_total == 1


def test_second_exchange_while_busy_is_rejected_and_cancel_discards_history():
    provider = BlockingProvider()
    session = _session(provider)

    async def run():
        first = asyncio.create_task(session.send_exchange("slow question"))
        await provider.started.wait()
        assert session.busy
        with pytest.raises(ExchangeInProgress):
            await session.send_exchange("another question")
        assert session.cancel() is True
        provider.release.set()
        with pytest.raises(ExchangeCancelled):
            await first
        return first

    asyncio.run(run())

    assert len(session.history) == 0
    assert not session.busy
    events = session.events_for(session.current_exchange_id)
    assert [event["type"] for event in events][-2:] == ["cancelled", "done"]
    assert events[-1]["payload"]["status"] == "failed"
    assert session.cancel() is False


def test_transport_failure_emits_error_then_done():
    session = _session(EmptyStreamProvider())

    with pytest.raises(ModelTransportFailure):
        asyncio.run(session.send_exchange("hello"))

    events = session.events_for(session.current_exchange_id)
    error_event, done_event = events[-2:]
    assert error_event["type"] == "error"
    assert error_event["payload"]["error"]["code"] == "E_MODEL_TRANSPORT"
    assert error_event["payload"]["error"]["retryable"] is True
    assert done_event["payload"]["status"] == "failed"
    assert len(session.history) == 0
    assert get_runtime_metrics().exchanges_failed_total == 1


def test_missing_credentials_surface_as_provider_auth_error():
    def factory():
        raise RuntimeError("API key not found for provider 'openai'.")

    session = _session(provider_factory=factory)

    with pytest.raises(RuntimeError):
        asyncio.run(session.send_exchange("hello"))

    error_event = session.events_for(session.current_exchange_id)[-2]
    assert error_event["payload"]["error"]["code"] == "E_PROVIDER_AUTH"


def test_confirmation_required_event_and_approval():
    workbook = InMemoryWorkbook()
    service = ConfirmationService()
    session = _session(
        ScriptedProvider([_write_a1(), ChatResponse(stop_reason="end_turn", text="Written.")]),
        workbook,
        confirmation_service=service,
        approval_timeout_seconds=1,
    )

    async def approve(event: dict) -> None:
        if event["type"] == "confirmation_required":
            await service.resolve(event["exchange_id"], event["payload"]["call_id"], True)

    answer = asyncio.run(session.send_exchange("Put 5 in A1", on_event=approve))

    assert answer == "Written."
    assert asyncio.run(workbook.read_cell("A1")) == "5"
    types = [event["type"] for event in session.events_for(session.current_exchange_id)]
    assert types.index("tool_call") < types.index("confirmation_required") < types.index("tool_result")
    events = session.events_for(session.current_exchange_id)
    call_id = next(e for e in events if e["type"] == "confirmation_required")["payload"]["call_id"]
    assert service.status(session.current_exchange_id, call_id) is None
    assert service.pending() == []


def test_denied_confirmation_reports_mutation_denied():
    workbook = InMemoryWorkbook()
    service = ConfirmationService()
    session = _session(
        ScriptedProvider([_write_a1(), ChatResponse(stop_reason="end_turn", text="Okay, I left it alone.")]),
        workbook,
        confirmation_service=service,
        approval_timeout_seconds=1,
    )

    async def deny(event: dict) -> None:
        if event["type"] == "confirmation_required":
            await service.resolve(event["exchange_id"], event["payload"]["call_id"], False)

    asyncio.run(session.send_exchange("Put 5 in A1", on_event=deny))

    result = next(e for e in session.events_for(session.current_exchange_id) if e["type"] == "tool_result")
    assert result["payload"]["ok"] is False
    assert result["payload"]["error"]["kind"] == "MutationDenied"
    assert workbook.active.cells == {}


def test_worksheet_mentions_reach_the_system_prompt():
    workbook = InMemoryWorkbook(("Sheet1", "Budget"))
    provider = ScriptedProvider([ChatResponse(stop_reason="end_turn", text="ok")])
    session = _session(provider, workbook)

    asyncio.run(session.send_exchange("What is in @budget?", selected_range="B2:C3"))

    prompt = provider.requests[0].system_prompt
    assert 'The active worksheet is "Sheet1".' in prompt
    assert "B2:C3" in prompt
    assert "Budget" in prompt


def test_history_carries_across_exchanges_and_reset_clears_it():
    provider = ScriptedProvider([
        ChatResponse(stop_reason="end_turn", text="first"),
        ChatResponse(stop_reason="end_turn", text="second"),
    ])
    session = _session(provider)

    asyncio.run(session.send_exchange("one"))
    asyncio.run(session.send_exchange("two"))

    assert [m.content for m in provider.requests[1].messages] == ["one", "first", "two"]
    session.reset()
    assert len(session.history) == 0
