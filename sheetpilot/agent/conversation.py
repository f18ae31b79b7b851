"""Append-only conversation history.

A ``Conversation`` is an immutable snapshot: ``append`` returns a new
snapshot and leaves the original untouched, so the UI can hold on to a
snapshot while the run loop keeps extending its own copy.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator

from sheetpilot.agent.messages import Message


class ConversationError(ValueError):
    """Raised when a message would break the tool-call pairing invariant."""


@dataclass(frozen=True, slots=True)
class Conversation:
    messages: tuple[Message, ...] = ()

    @classmethod
    def of(cls, messages: Iterable[Message]) -> Conversation:
        conversation = cls()
        for message in messages:
            conversation = conversation.append(message)
        return conversation

    def append(self, message: Message) -> Conversation:
        if message.role == "tool":
            self._check_tool_result(message)
        return Conversation(messages=(*self.messages, message))

    def extend(self, messages: Iterable[Message]) -> Conversation:
        conversation = self
        for message in messages:
            conversation = conversation.append(message)
        return conversation

    def current_exchange(self) -> tuple[Message, ...]:
        """Messages from the most recent user turn onwards."""
        for index in range(len(self.messages) - 1, -1, -1):
            if self.messages[index].role == "user":
                return self.messages[index:]
        return self.messages

    def pending_tool_call_ids(self) -> set[str]:
        """Tool call ids of the current exchange that have no result yet."""
        requested: set[str] = set()
        answered: set[str] = set()
        for message in self.current_exchange():
            for call in message.tool_calls:
                requested.add(call.id)
            if message.tool_call_id is not None:
                answered.add(message.tool_call_id)
        return requested - answered

    def _check_tool_result(self, message: Message) -> None:
        call_id = message.tool_call_id
        scope = self.current_exchange()
        matches = sum(
            1
            for existing in scope
            if existing.role == "assistant"
            for call in existing.tool_calls
            if call.id == call_id
        )
        if matches != 1:
            raise ConversationError(
                f"tool result {call_id!r} must answer exactly one earlier tool call (found {matches})"
            )
        if any(existing.tool_call_id == call_id for existing in scope):
            raise ConversationError(f"tool call {call_id!r} already has a result")

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

    def __len__(self) -> int:
        return len(self.messages)

    def last(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    def to_list(self) -> list[dict]:
        return [message.to_dict() for message in self.messages]
