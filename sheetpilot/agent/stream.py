"""Assembles streamed model output into a ChatResponse.

Text fragments are concatenated as they arrive. Tool-call fragments are
keyed by their stream index and only become ToolCalls once the stream has
finished, so a half-received argument string is never handed out.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from sheetpilot.agent.messages import ChatResponse, ToolCall
from sheetpilot.agent.providers.base import StreamEvent
from sheetpilot.errors import ModelTransportFailure


@dataclass(slots=True)
class _PartialToolCall:
    id: str | None = None
    name: str = ""
    arguments: list[str] = field(default_factory=list)


class StreamAssembler:
    def __init__(self) -> None:
        self._text: list[str] = []
        self._calls: dict[int, _PartialToolCall] = {}
        self._final: ChatResponse | None = None
        self.events_seen = 0

    def feed(self, event: StreamEvent) -> str | None:
        """Consume one event; returns the text delta when the event carries one."""
        self.events_seen += 1
        if event.type == "text_delta":
            if event.text:
                self._text.append(event.text)
                return event.text
            return None
        if event.type == "tool_call_delta":
            partial = self._calls.setdefault(event.index, _PartialToolCall())
            if event.tool_call_id and not partial.id:
                partial.id = event.tool_call_id
            if event.tool_name and not partial.name:
                partial.name = event.tool_name
            if event.arguments_delta:
                partial.arguments.append(event.arguments_delta)
            return None
        if event.type == "done":
            self._final = event.response
            return None
        raise ModelTransportFailure(f"Unknown stream event type: {event.type}")

    @property
    def text(self) -> str:
        return "".join(self._text)

    @property
    def has_output(self) -> bool:
        return bool(self._text or self._calls or self._final is not None)

    def finish(self) -> ChatResponse:
        if self._final is not None and not self._calls:
            final = self._final
            if not final.text and self._text:
                final.text = self.text
            return final

        tool_calls = [
            ToolCall(
                id=partial.id or f"call_{uuid.uuid4().hex[:8]}",
                name=partial.name,
                raw_arguments="".join(partial.arguments),
            )
            for _, partial in sorted(self._calls.items())
        ]
        stop_reason = "tool_use" if tool_calls else "end_turn"
        usage: dict[str, int] = {}
        if self._final is not None:
            usage = self._final.usage
            if self._final.stop_reason == "max_tokens":
                stop_reason = "max_tokens"
        return ChatResponse(
            stop_reason=stop_reason,
            text=self.text,
            tool_calls=tool_calls,
            usage=usage,
        )
