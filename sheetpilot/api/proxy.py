"""Thin OpenAI proxy endpoints for clients that cannot hold the API key."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from openai import OpenAIError
from pydantic import BaseModel, Field

from sheetpilot.agent.providers.openai_provider import transport_failure
from sheetpilot.deps import get_openai_client
from sheetpilot.errors import ModelTransportFailure
from sheetpilot.services.embedding_service import DEFAULT_EMBEDDING_MODEL, EmbeddingClient

router = APIRouter(prefix="/api/openai", tags=["proxy"])

DEFAULT_PROXY_CHAT_MODEL = "gpt-4o-mini"


class ProxyChatRequest(BaseModel):
    model: str = DEFAULT_PROXY_CHAT_MODEL
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] | None = None


class ProxyEmbeddingRequest(BaseModel):
    model: str = DEFAULT_EMBEDDING_MODEL
    input: str = Field(min_length=1)


@router.post("/chat")
async def proxy_chat(payload: ProxyChatRequest, client=Depends(get_openai_client)):
    kwargs: dict[str, Any] = {"model": payload.model, "messages": payload.messages}
    if payload.tools:
        kwargs["tools"] = payload.tools
    try:
        completion = await client.chat.completions.create(**kwargs)
    except OpenAIError as exc:
        raise transport_failure(exc, "OpenAI chat request failed") from exc
    if not completion.choices:
        raise ModelTransportFailure("No message returned from OpenAI")
    return {"message": completion.choices[0].message.model_dump(exclude_none=True)}


@router.post("/embeddings")
async def proxy_embeddings(payload: ProxyEmbeddingRequest, client=Depends(get_openai_client)):
    embedder = EmbeddingClient(api_key="", model=payload.model, client=client)
    try:
        embedding = await embedder.embed(payload.input)
    except OpenAIError as exc:
        raise transport_failure(exc, "OpenAI embeddings request failed") from exc
    except IndexError as exc:
        raise ModelTransportFailure("No embedding returned from OpenAI") from exc
    return {"embedding": embedding}
