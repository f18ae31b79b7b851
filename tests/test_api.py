from __future__ import annotations

import json
import time
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import openai

from sheetpilot.agent.excel_tools import build_excel_registry
from sheetpilot.agent.messages import ChatResponse, ToolCall
from sheetpilot.agent.providers.base import ChatRequest, ProviderAdapter
from sheetpilot.deps import get_confirmation_service, set_dependencies
from sheetpilot.services.chat_service import ChatSession
from sheetpilot.services.confirmation_service import ConfirmationService
from sheetpilot.workbook.memory import InMemoryWorkbook


class ScriptedProvider(ProviderAdapter):
    def __init__(self, responses: list[ChatResponse]) -> None:
        self._responses = list(responses)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        return self._responses.pop(0)


class EmptyStreamProvider(ProviderAdapter):
    async def chat(self, request: ChatRequest) -> ChatResponse:
        raise AssertionError("unused")

    async def chat_stream(self, request: ChatRequest):
        return
        yield


class FakeMessage:
    def __init__(self, content: str) -> None:
        self.content = content

    def model_dump(self, exclude_none: bool = False) -> dict:
        return {"role": "assistant", "content": self.content}


def _install(provider: ProviderAdapter, openai_client=None) -> ChatSession:
    workbook = InMemoryWorkbook()
    session = ChatSession(registry=build_excel_registry(workbook), model="test-model", provider=provider, workbook=workbook)
    set_dependencies(session, ConfirmationService(), openai_client)
    return session


def _write_then_answer() -> list[ChatResponse]:
    call = ToolCall(id="call_1", name="write_to_excel", raw_arguments=json.dumps({"startCell": "A1", "values": [[5]]}))
    return [
        ChatResponse(stop_reason="tool_use", text="", tool_calls=[call]),
        ChatResponse(stop_reason="end_turn", text="Done."),
    ]


# ─── Ops ──────────────────────────────────────────────────────────────────────

def test_health_reports_runtime(isolated_client):
    response = isolated_client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["version"] == "0.1.0"
    assert body["runtime_status"] == "ok"


def test_trace_id_is_echoed(isolated_client):
    response = isolated_client.get("/health", headers={"X-Trace-Id": "trace-abc"})
    assert response.headers["X-Trace-Id"] == "trace-abc"
    assert isolated_client.get("/health").headers["X-Trace-Id"]


def test_operations_are_listed_with_schemas(isolated_client):
    operations = isolated_client.get("/v1/operations").json()["operations"]
    by_name = {operation["name"]: operation for operation in operations}
    assert len(by_name) == 21
    assert by_name["write_to_excel"]["mutating"] is True
    assert by_name["read_range"]["mutating"] is False
    assert by_name["write_to_excel"]["input_schema"]["required"] == ["startCell", "values"]


# ─── Exchanges ────────────────────────────────────────────────────────────────

def test_exchange_without_credentials_returns_provider_auth_error(isolated_client):
    response = isolated_client.post("/v1/exchanges", json={"text": "hello"}, headers={"X-Trace-Id": "trace-auth"})
    assert response.status_code == 401
    error = response.json()["error"]
    assert error["code"] == "E_PROVIDER_AUTH"
    assert error["trace_id"] == "trace-auth"
    assert response.headers["X-Trace-Id"] == "trace-auth"


def test_empty_exchange_text_is_rejected(isolated_client):
    response = isolated_client.post("/v1/exchanges", json={"text": ""})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "E_SCHEMA_INVALID"


def test_exchange_runs_to_done(isolated_client):
    session = _install(ScriptedProvider(_write_then_answer()))

    response = isolated_client.post("/v1/exchanges", json={"text": "Put 5 in A1"})

    assert response.status_code == 200
    body = response.json()
    assert body["state"] == "done"
    assert body["answer"] == "Done."
    assert body["exchange_id"] == session.current_exchange_id
    history = isolated_client.get("/v1/history").json()["messages"]
    assert [message["role"] for message in history] == ["user", "assistant", "tool", "assistant"]


def test_exchange_transport_failure_uses_error_envelope(isolated_client):
    _install(EmptyStreamProvider())

    response = isolated_client.post("/v1/exchanges", json={"text": "hello"})

    assert response.status_code == 502
    error = response.json()["error"]
    assert error["code"] == "E_MODEL_TRANSPORT"
    assert error["retryable"] is True
    assert error["cause"] == "ModelTransportFailure"


def test_event_stream_replays_finished_exchange(isolated_client):
    _install(ScriptedProvider(_write_then_answer()))
    exchange_id = isolated_client.post("/v1/exchanges", json={"text": "Put 5 in A1"}).json()["exchange_id"]

    response = isolated_client.get(f"/v1/exchanges/{exchange_id}/events")

    assert response.status_code == 200
    assert "event: exchange_started" in response.text
    assert "event: tool_result" in response.text
    assert "event: done" in response.text
    payloads = [
        json.loads(line[len("data: "):])
        for line in response.text.splitlines()
        if line.startswith("data: ")
    ]
    assert [payload["seq"] for payload in payloads] == list(range(1, len(payloads) + 1))
    assert payloads[-1]["payload"]["answer"] == "Done."


def test_event_stream_for_unknown_exchange_is_404(isolated_client):
    response = isolated_client.get("/v1/exchanges/ex_missing/events")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "E_EXCHANGE_NOT_FOUND"


def test_background_exchange_returns_immediately(isolated_client):
    session = _install(ScriptedProvider([ChatResponse(stop_reason="end_turn", text="later")]))

    body = isolated_client.post("/v1/exchanges", json={"text": "hi", "background": True}).json()

    assert body["state"] == "awaiting_model"
    assert body["answer"] is None
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        events = session.events_for(body["exchange_id"]) or []
        if events and events[-1]["type"] == "done":
            break
        time.sleep(0.01)
    assert events[-1]["payload"]["answer"] == "later"


def test_cancel_when_idle(isolated_client):
    response = isolated_client.post("/v1/exchanges/cancel")
    assert response.json() == {"cancelled": False, "exchange_id": None}


def test_clear_history(isolated_client):
    session = _install(ScriptedProvider([ChatResponse(stop_reason="end_turn", text="hello")]))
    isolated_client.post("/v1/exchanges", json={"text": "hi"})
    assert len(session.history) == 2

    assert isolated_client.delete("/v1/history").json() == {"ok": True}
    assert isolated_client.get("/v1/history").json() == {"messages": []}


# ─── Tool confirmations ───────────────────────────────────────────────────────

def test_tool_confirmation_lifecycle(isolated_client):
    service = get_confirmation_service()
    payload = {"exchange_id": "ex_1", "call_id": "call_1", "approved": True}

    missing = isolated_client.post("/v1/tool-confirmations", json=payload)
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "E_CONFIRMATION_NOT_FOUND"

    service.request("ex_1", "call_1")
    assert isolated_client.get("/v1/tool-confirmations").json() == {
        "pending": [{"exchange_id": "ex_1", "call_id": "call_1"}]
    }
    assert isolated_client.post("/v1/tool-confirmations", json=payload).json() == {"ok": True}

    conflict = isolated_client.post("/v1/tool-confirmations", json=payload)
    assert conflict.status_code == 409
    assert conflict.json()["error"]["details"]["status"] == "approved"


# ─── Diagnostics and metrics ──────────────────────────────────────────────────

def test_diagnostics_redacts_api_key(isolated_client, monkeypatch):
    monkeypatch.setenv("SHEETPILOT_API_KEY", "sk-live-secret-0123456789")

    response = isolated_client.get("/v1/diagnostics")

    assert response.status_code == 200
    assert "sk-live-secret-0123456789" not in response.text
    body = response.json()
    assert body["settings"]["api_key"] == "<redacted>"
    assert body["session"]["busy"] is False
    assert "write_to_excel" in body["session"]["operations"]


def test_metrics_count_exchanges(isolated_client):
    _install(ScriptedProvider(_write_then_answer()))
    isolated_client.post("/v1/exchanges", json={"text": "Put 5 in A1"})

    metrics = isolated_client.get("/v1/metrics").json()

    assert metrics["exchanges_total"] == 1
    assert metrics["model_calls_total"] == 2
    assert metrics["tool_calls_total"] == {"write_to_excel": 1}


# ─── OpenAI proxy ─────────────────────────────────────────────────────────────

def test_proxy_without_credentials(isolated_client):
    response = isolated_client.post("/api/openai/embeddings", json={"input": "hello"})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "E_PROVIDER_AUTH"


def test_proxy_chat_and_embeddings(isolated_client):
    create_chat = AsyncMock(return_value=SimpleNamespace(choices=[SimpleNamespace(message=FakeMessage("hi there"))]))
    create_embedding = AsyncMock(return_value=SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2])]))
    client = SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=create_chat)),
        embeddings=SimpleNamespace(create=create_embedding),
    )
    _install(ScriptedProvider([]), openai_client=client)

    chat = isolated_client.post("/api/openai/chat", json={"messages": [{"role": "user", "content": "hi"}]})
    embedding = isolated_client.post("/api/openai/embeddings", json={"input": "Sheet1 contents"})

    assert chat.json() == {"message": {"role": "assistant", "content": "hi there"}}
    assert create_chat.await_args.kwargs["model"] == "gpt-4o-mini"
    assert embedding.json() == {"embedding": [0.1, 0.2]}


def test_proxy_rate_limit_keeps_provider_code(isolated_client):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    error = openai.RateLimitError("slow down", response=httpx.Response(429, request=request), body=None)
    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock(side_effect=error))))
    _install(ScriptedProvider([]), openai_client=client)

    response = isolated_client.post("/api/openai/chat", json={"messages": [{"role": "user", "content": "hi"}]})

    assert response.status_code == 429
    payload = response.json()["error"]
    assert payload["code"] == "E_PROVIDER_RATE_LIMIT"
    assert payload["retryable"] is True
