import asyncio

import pytest

from sheetpilot.agent.gate import CallbackGate, ConfirmationGate, GateDecision
from sheetpilot.errors import SheetPilotApiError
from sheetpilot.services.confirmation_service import ConfirmationService
from sheetpilot.trace import set_current_exchange_id


def test_confirmation_wait_and_resolve():
    service = ConfirmationService()
    service.request("ex1", "call1")

    async def waiter():
        return await service.wait_for("ex1", "call1", timeout_seconds=1)

    async def run():
        task = asyncio.create_task(waiter())
        await asyncio.sleep(0.05)
        await service.resolve("ex1", "call1", True)
        return await task

    assert asyncio.run(run()) is True
    assert service.status("ex1", "call1") == "approved"


def test_confirmation_conflict_raises_error():
    service = ConfirmationService()
    service.request("ex1", "call1")

    async def run():
        await service.resolve("ex1", "call1", False)
        with pytest.raises(SheetPilotApiError) as exc:
            await service.resolve("ex1", "call1", True)
        assert exc.value.code == "E_CONFIRMATION_ALREADY_DECIDED"
        assert exc.value.status_code == 409

    asyncio.run(run())


def test_confirmation_unknown_call_raises_not_found():
    service = ConfirmationService()

    async def run():
        with pytest.raises(SheetPilotApiError) as exc:
            await service.resolve("ex1", "nope", True)
        assert exc.value.code == "E_CONFIRMATION_NOT_FOUND"
        assert exc.value.status_code == 404

    asyncio.run(run())


def test_confirmation_timeout_counts_as_denial():
    service = ConfirmationService()
    service.request("ex1", "call1")

    async def run():
        with pytest.raises(asyncio.TimeoutError):
            await service.wait_for("ex1", "call1", timeout_seconds=0.01)

    asyncio.run(run())
    assert service.status("ex1", "call1") == "denied"


def test_deny_all_pending_wakes_waiters():
    service = ConfirmationService()
    service.request("ex1", "call1")
    service.request("ex2", "call9")

    async def run():
        task = asyncio.create_task(service.wait_for("ex1", "call1", timeout_seconds=1))
        await asyncio.sleep(0.01)
        service.deny_all_pending("ex1")
        return await task

    assert asyncio.run(run()) is False
    assert service.pending() == [{"exchange_id": "ex2", "call_id": "call9"}]


def test_confirmation_gate_reports_pending_and_waits_for_decision():
    service = ConfirmationService()
    notified: list[tuple] = []

    async def on_pending(exchange_id, call_id, operation_name, arguments):
        notified.append((exchange_id, call_id, operation_name, arguments))

    gate = ConfirmationGate(service, timeout_seconds=1, on_pending=on_pending)

    async def run():
        set_current_exchange_id("ex_gate")
        task = asyncio.create_task(gate.check("write_to_excel", {"startCell": "A1"}, tool_call_id="call_7"))
        await asyncio.sleep(0.02)
        assert service.pending() == [{"exchange_id": "ex_gate", "call_id": "call_7"}]
        await service.resolve("ex_gate", "call_7", False)
        return await task

    decision = asyncio.run(run())

    assert decision == GateDecision.deny("User denied write_to_excel.")
    assert notified == [("ex_gate", "call_7", "write_to_excel", {"startCell": "A1"})]


def test_confirmation_gate_timeout_denies():
    gate = ConfirmationGate(ConfirmationService(), timeout_seconds=0.01)
    decision = asyncio.run(gate.check("manage_worksheet", {}, tool_call_id="call_1"))
    assert not decision.allowed
    assert "Timed out" in decision.reason


def test_callback_gate_accepts_sync_and_async_callbacks():
    async def approve(name, args):
        return True

    assert asyncio.run(CallbackGate(approve).check("write_to_excel", {})).allowed
    denied = asyncio.run(CallbackGate(lambda name, args: False).check("write_to_excel", {}))
    assert not denied.allowed
    assert denied.reason == "User denied write_to_excel."


def test_forget_drops_decided_and_pending_entries_of_one_exchange():
    service = ConfirmationService()
    service.request("ex1", "call1")
    service.request("ex1", "call2")
    service.request("ex2", "call1")

    async def run():
        await service.resolve("ex1", "call1", True)
        task = asyncio.create_task(service.wait_for("ex1", "call2", timeout_seconds=1))
        await asyncio.sleep(0.01)
        service.forget("ex1")
        return await task

    assert asyncio.run(run()) is False
    assert service.status("ex1", "call1") is None
    assert service.status("ex1", "call2") is None
    assert service.pending() == [{"exchange_id": "ex2", "call_id": "call1"}]
