"""Message types shared by the run loop, the dispatcher and the providers."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

TOOL_ERROR_KINDS = frozenset({
    "UnknownOperation",
    "InvalidArguments",
    "MutationDenied",
    "ExecutionFailed",
})


@dataclass(frozen=True, slots=True)
class ToolCall:
    id: str
    name: str
    raw_arguments: str = ""

    def parsed_arguments(self) -> dict[str, Any] | None:
        """Decode raw_arguments, or None when they are not a complete JSON object."""
        text = self.raw_arguments.strip()
        if not text:
            return {}
        try:
            value = json.loads(text)
        except (json.JSONDecodeError, ValueError):
            return None
        return value if isinstance(value, dict) else None


@dataclass(frozen=True, slots=True)
class ToolError:
    kind: str
    message: str

    def __post_init__(self) -> None:
        if self.kind not in TOOL_ERROR_KINDS:
            raise ValueError(f"unknown tool error kind: {self.kind}")


@dataclass(frozen=True, slots=True)
class ToolResult:
    tool_call_id: str
    payload: Any = None
    error: ToolError | None = None

    def __post_init__(self) -> None:
        if self.error is not None and self.payload is not None:
            raise ValueError("ToolResult carries either a payload or an error, not both")
        if self.error is None and self.payload is None:
            raise ValueError("ToolResult requires a payload or an error")

    @classmethod
    def success(cls, tool_call_id: str, payload: Any) -> ToolResult:
        if payload is None:
            payload = {"status": "ok"}
        return cls(tool_call_id=tool_call_id, payload=payload)

    @classmethod
    def failure(cls, tool_call_id: str, kind: str, message: str) -> ToolResult:
        return cls(tool_call_id=tool_call_id, error=ToolError(kind=kind, message=message))

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_content(self) -> str:
        if self.error is not None:
            body: Any = {"error": {"kind": self.error.kind, "message": self.error.message}}
        else:
            body = self.payload
        if isinstance(body, str):
            return body
        return json.dumps(body, ensure_ascii=False, default=str)


@dataclass(frozen=True, slots=True)
class Message:
    role: str  # "system" | "user" | "assistant" | "tool"
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if self.role not in {"system", "user", "assistant", "tool"}:
            raise ValueError(f"unsupported message role: {self.role}")
        if self.tool_calls and self.role != "assistant":
            raise ValueError("only assistant messages may carry tool calls")
        if self.role == "tool" and not self.tool_call_id:
            raise ValueError("tool messages require a tool_call_id")
        if self.role != "tool" and self.tool_call_id is not None:
            raise ValueError("only tool messages may carry a tool_call_id")

    @classmethod
    def from_tool_result(cls, result: ToolResult) -> Message:
        return cls(role="tool", content=result.to_content(), tool_call_id=result.tool_call_id)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [
                {"id": tc.id, "name": tc.name, "arguments": tc.raw_arguments}
                for tc in self.tool_calls
            ]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        return data


@dataclass(slots=True)
class ChatResponse:
    stop_reason: str  # "end_turn" | "tool_use" | "max_tokens"
    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: dict[str, int] = field(default_factory=dict)
