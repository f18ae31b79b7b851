from __future__ import annotations

import asyncio
from typing import Dict, Tuple

from sheetpilot.errors import SheetPilotApiError


class ConfirmationService:
    def __init__(self) -> None:
        self._status: Dict[Tuple[str, str], str] = {}
        self._waiters: Dict[Tuple[str, str], asyncio.Future[bool]] = {}

    def request(self, exchange_id: str, call_id: str) -> None:
        self._status.setdefault((exchange_id, call_id), "pending")

    def status(self, exchange_id: str, call_id: str) -> str | None:
        return self._status.get((exchange_id, call_id))

    def pending(self) -> list[dict[str, str]]:
        return [
            {"exchange_id": exchange_id, "call_id": call_id}
            for (exchange_id, call_id), status in self._status.items()
            if status == "pending"
        ]

    async def wait_for(self, exchange_id: str, call_id: str, timeout_seconds: float = 600) -> bool:
        key = (exchange_id, call_id)
        existing_status = self._status.get(key)
        if existing_status == "approved":
            return True
        if existing_status == "denied":
            return False

        loop = asyncio.get_running_loop()
        fut = loop.create_future()
        self._waiters[key] = fut
        try:
            return await asyncio.wait_for(fut, timeout=timeout_seconds)
        except asyncio.TimeoutError:
            self._status[key] = "denied"
            raise
        finally:
            self._waiters.pop(key, None)

    async def resolve(self, exchange_id: str, call_id: str, approved: bool) -> None:
        key = (exchange_id, call_id)
        existing_status = self._status.get(key)
        if existing_status in {"approved", "denied"}:
            raise SheetPilotApiError(
                code="E_CONFIRMATION_ALREADY_DECIDED",
                message="Tool confirmation has already been decided.",
                retryable=False,
                status_code=409,
                details={
                    "exchange_id": exchange_id,
                    "call_id": call_id,
                    "status": existing_status,
                },
                cause="confirmation_conflict",
            )
        if existing_status is None:
            raise SheetPilotApiError(
                code="E_CONFIRMATION_NOT_FOUND",
                message="No pending tool confirmation matches this request.",
                retryable=False,
                status_code=404,
                details={
                    "exchange_id": exchange_id,
                    "call_id": call_id,
                },
                cause="confirmation_missing",
            )

        self._status[key] = "approved" if approved else "denied"
        waiter = self._waiters.get(key)
        if waiter and not waiter.done():
            waiter.set_result(approved)

    def deny_all_pending(self, exchange_id: str) -> None:
        """Deny every open confirmation of an exchange, waking its waiters."""
        for (pending_exchange, call_id), status in list(self._status.items()):
            if pending_exchange != exchange_id or status != "pending":
                continue
            key = (pending_exchange, call_id)
            self._status[key] = "denied"
            waiter = self._waiters.get(key)
            if waiter and not waiter.done():
                waiter.set_result(False)

    def forget(self, exchange_id: str) -> None:
        """Drop every confirmation recorded for a finished exchange."""
        for key in [key for key in self._status if key[0] == exchange_id]:
            del self._status[key]
            waiter = self._waiters.pop(key, None)
            if waiter and not waiter.done():
                waiter.set_result(False)
