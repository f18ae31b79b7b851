from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

from sheetpilot.services.embedding_service import (
    EmbeddingCache,
    EmbeddingClient,
    EmbeddingService,
    extract_worksheet_mentions,
)
from sheetpilot.workbook.memory import InMemoryWorkbook


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeEmbedder:
    def __init__(self) -> None:
        self.inputs: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.inputs.append(text)
        return [float(len(text))]


def test_cache_entry_expires_at_ttl():
    clock = FakeClock()
    cache = EmbeddingCache(ttl_seconds=60, clock=clock)
    cache.put("Sales", [0.1])

    clock.now = 59.9
    assert cache.get("Sales") == [0.1]
    clock.now = 60
    assert cache.get("Sales") is None
    assert len(cache) == 0


def test_cache_invalidate():
    cache = EmbeddingCache()
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    cache.invalidate("a")
    assert "a" not in cache
    assert "b" in cache
    cache.invalidate()
    assert len(cache) == 0


def test_embed_worksheet_uses_cache_until_expiry():
    clock = FakeClock()
    workbook = InMemoryWorkbook(("Sales",))
    asyncio.run(workbook.write_range("A1", [["Region", "Amount"]]))
    embedder = FakeEmbedder()
    service = EmbeddingService(embedder, workbook, EmbeddingCache(ttl_seconds=10, clock=clock))

    first = asyncio.run(service.embed_worksheet("Sales"))
    second = asyncio.run(service.embed_worksheet("Sales"))
    clock.now = 11
    asyncio.run(service.embed_worksheet("Sales"))

    assert first == second
    assert len(embedder.inputs) == 2
    assert embedder.inputs[0] == "Sheet Sales (A1:B1):\nRegion\tAmount"


def test_embed_tagged_worksheets_skips_failures():
    workbook = InMemoryWorkbook(("Sales", "Notes"))
    service = EmbeddingService(FakeEmbedder(), workbook)

    embeddings = asyncio.run(service.embed_tagged_worksheets(["Sales", "Missing"]))

    assert list(embeddings) == ["Sales"]
    assert list(asyncio.run(service.embed_all_worksheets())) == ["Sales", "Notes"]


def test_embedding_client_requests_float_vectors():
    create = AsyncMock(return_value=SimpleNamespace(data=[SimpleNamespace(embedding=(0.5, 0.25))]))
    client = EmbeddingClient("sk-test", client=SimpleNamespace(embeddings=SimpleNamespace(create=create)))

    vector = asyncio.run(client.embed("hello"))

    assert vector == [0.5, 0.25]
    create.assert_awaited_once_with(model="text-embedding-3-large", input="hello", encoding_format="float")


def test_extract_worksheet_mentions():
    names = ["Sales", "Q1_Budget", "Notes"]
    text = "Compare @sales with @Q1_Budget and @Sales again, ignore @Unknown"
    assert extract_worksheet_mentions(text, names) == ["Sales", "Q1_Budget"]
    assert extract_worksheet_mentions("no mentions here", names) == []
