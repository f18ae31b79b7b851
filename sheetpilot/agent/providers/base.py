"""Provider base types: ChatRequest / StreamEvent / ProviderAdapter."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator

from sheetpilot.agent.messages import ChatResponse, Message


@dataclass(slots=True)
class ToolSchema:
    name: str
    description: str
    input_schema: dict


@dataclass(slots=True)
class ChatRequest:
    model: str
    system_prompt: str
    messages: list[Message]
    tools: list[ToolSchema] = field(default_factory=list)
    max_tokens: int = 4096
    temperature: float = 0.0
    parallel_tool_calls: bool = False


@dataclass(slots=True)
class StreamEvent:
    type: str  # "text_delta" | "tool_call_delta" | "done"
    text: str = ""
    index: int = 0
    tool_call_id: str | None = None
    tool_name: str | None = None
    arguments_delta: str = ""
    response: ChatResponse | None = None


class ProviderAdapter(ABC):
    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse: ...

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        """Default stream for providers without native streaming: one shot."""
        response = await self.chat(request)
        if response.text:
            yield StreamEvent(type="text_delta", text=response.text)
        yield StreamEvent(type="done", response=response)
