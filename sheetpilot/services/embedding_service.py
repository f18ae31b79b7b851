"""Worksheet embeddings with an explicit, injectable TTL cache."""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from openai import AsyncOpenAI

from sheetpilot.workbook.base import Workbook

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-large"
DEFAULT_TTL_SECONDS = 30 * 60

_MENTION_RE = re.compile(r"@(\w+)")


@dataclass(slots=True)
class CacheEntry:
    value: list[float]
    inserted_at: float


class EmbeddingCache:
    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> list[float] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.inserted_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return entry.value

    def put(self, key: str, value: list[float]) -> None:
        self._entries[key] = CacheEntry(value=value, inserted_at=self._clock())

    def invalidate(self, key: str | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)


class EmbeddingClient:
    def __init__(
        self,
        api_key: str,
        *,
        model: str = DEFAULT_EMBEDDING_MODEL,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def embed(self, text: str) -> list[float]:
        response = await self._client.embeddings.create(
            model=self.model,
            input=text,
            encoding_format="float",
        )
        return list(response.data[0].embedding)


class EmbeddingService:
    def __init__(self, client: EmbeddingClient, workbook: Workbook, cache: EmbeddingCache | None = None) -> None:
        self.client = client
        self.workbook = workbook
        self.cache = cache or EmbeddingCache()

    async def embed_worksheet(self, sheet_name: str) -> list[float]:
        cached = self.cache.get(sheet_name)
        if cached is not None:
            logger.debug("using cached embedding for worksheet %s", sheet_name)
            return cached

        logger.debug("generating embedding for worksheet %s", sheet_name)
        content = await self.workbook.get_sheet_content(sheet_name, include_metadata=True)
        embedding = await self.client.embed(content)
        self.cache.put(sheet_name, embedding)
        return embedding

    async def embed_tagged_worksheets(self, sheet_names: Sequence[str]) -> dict[str, list[float]]:
        return await self._embed_each(sheet_names)

    async def embed_all_worksheets(self) -> dict[str, list[float]]:
        return await self._embed_each(await self.workbook.get_worksheet_names())

    async def _embed_each(self, sheet_names: Sequence[str]) -> dict[str, list[float]]:
        embeddings: dict[str, list[float]] = {}
        for name in sheet_names:
            try:
                embeddings[name] = await self.embed_worksheet(name)
            except Exception:  # noqa: BLE001
                logger.warning("failed to embed worksheet %s", name, exc_info=True)
        return embeddings


def extract_worksheet_mentions(text: str, worksheet_names: Sequence[str]) -> list[str]:
    """Worksheet names referenced as @Name in text, matched case-insensitively."""
    by_lower = {name.lower(): name for name in reversed(list(worksheet_names))}
    mentions: list[str] = []
    for match in _MENTION_RE.finditer(text):
        name = by_lower.get(match.group(1).lower())
        if name is not None and name not in mentions:
            mentions.append(name)
    return mentions
