"""Mutation gate: the approval hook consulted before any mutating operation."""
from __future__ import annotations

import asyncio
import inspect
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from sheetpilot.trace import get_current_exchange_id
from sheetpilot.services.confirmation_service import ConfirmationService


@dataclass(frozen=True, slots=True)
class GateDecision:
    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls) -> GateDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> GateDecision:
        return cls(allowed=False, reason=reason or "Mutation denied.")


class MutationGate:
    """Allows everything. Subclasses impose approval policies."""

    async def check(
        self,
        operation_name: str,
        arguments: dict[str, Any],
        *,
        tool_call_id: str | None = None,
    ) -> GateDecision:
        return GateDecision.allow()


AllowAllGate = MutationGate

ApprovalCallback = Callable[[str, dict[str, Any]], "bool | GateDecision | Awaitable[bool | GateDecision]"]


class CallbackGate(MutationGate):
    """Delegates to a host approval callback (sync or async)."""

    def __init__(self, callback: ApprovalCallback) -> None:
        self._callback = callback

    async def check(
        self,
        operation_name: str,
        arguments: dict[str, Any],
        *,
        tool_call_id: str | None = None,
    ) -> GateDecision:
        outcome = self._callback(operation_name, dict(arguments))
        if inspect.isawaitable(outcome):
            outcome = await outcome
        if isinstance(outcome, GateDecision):
            return outcome
        if outcome:
            return GateDecision.allow()
        return GateDecision.deny(f"User denied {operation_name}.")


PendingCallback = Callable[[str, str, str, dict[str, Any]], "Awaitable[None] | None"]


class ConfirmationGate(MutationGate):
    """Human-in-the-loop approval through the ConfirmationService.

    Registers a pending confirmation keyed by (exchange id, call id), tells
    the host about it through ``on_pending`` and waits for a decision.
    A timeout counts as a denial.
    """

    def __init__(
        self,
        service: ConfirmationService,
        *,
        timeout_seconds: float = 600,
        on_pending: PendingCallback | None = None,
    ) -> None:
        self.service = service
        self.timeout_seconds = timeout_seconds
        self.on_pending = on_pending

    async def check(
        self,
        operation_name: str,
        arguments: dict[str, Any],
        *,
        tool_call_id: str | None = None,
    ) -> GateDecision:
        exchange_id = get_current_exchange_id()
        call_id = tool_call_id or f"call_{uuid.uuid4().hex[:8]}"
        self.service.request(exchange_id, call_id)
        if self.on_pending is not None:
            notified = self.on_pending(exchange_id, call_id, operation_name, dict(arguments))
            if inspect.isawaitable(notified):
                await notified

        try:
            approved = await self.service.wait_for(exchange_id, call_id, timeout_seconds=self.timeout_seconds)
        except asyncio.TimeoutError:
            return GateDecision.deny(f"Timed out waiting for approval of {operation_name}.")
        if approved:
            return GateDecision.allow()
        return GateDecision.deny(f"User denied {operation_name}.")
