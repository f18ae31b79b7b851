from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import AsyncIterator

TERMINAL_EVENT_TYPES = {"done"}


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue[dict]]] = defaultdict(set)

    def subscriber_count(self, exchange_id: str) -> int:
        return len(self._subscribers.get(exchange_id, set()))

    async def publish(self, exchange_id: str, event: dict) -> None:
        for queue in list(self._subscribers.get(exchange_id, set())):
            await queue.put(event)

    def attach(self, exchange_id: str) -> asyncio.Queue[dict]:
        """Register a queue right away so no event published afterwards is missed."""
        queue: asyncio.Queue[dict] = asyncio.Queue()
        self._subscribers[exchange_id].add(queue)
        return queue

    def detach(self, exchange_id: str, queue: asyncio.Queue[dict]) -> None:
        subscribers = self._subscribers.get(exchange_id)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            self._subscribers.pop(exchange_id, None)

    async def drain(self, queue: asyncio.Queue[dict]) -> AsyncIterator[dict]:
        while True:
            event = await queue.get()
            yield event
            if event.get("type") in TERMINAL_EVENT_TYPES:
                break

    async def subscribe(self, exchange_id: str) -> AsyncIterator[dict]:
        queue = self.attach(exchange_id)
        try:
            async for event in self.drain(queue):
                yield event
        finally:
            self.detach(exchange_id, queue)
