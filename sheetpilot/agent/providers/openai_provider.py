"""OpenAI Chat Completions API provider with function-calling and streaming."""
from __future__ import annotations

import uuid
from typing import AsyncIterator

from openai import (
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    OpenAIError,
    PermissionDeniedError,
    RateLimitError,
)

from sheetpilot.agent.messages import ChatResponse, Message, ToolCall
from sheetpilot.agent.providers.base import ChatRequest, ProviderAdapter, StreamEvent
from sheetpilot.errors import (
    ModelTransportFailure,
    ProviderAuthFailure,
    ProviderRateLimited,
    ProviderTimeout,
)


class OpenAIProvider(ProviderAdapter):
    def __init__(self, api_key: str, base_url: str | None = None, client: AsyncOpenAI | None = None) -> None:
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        payload = _build_payload(request)
        try:
            response = await self.client.chat.completions.create(**payload)
        except OpenAIError as exc:
            raise transport_failure(exc, "model request failed") from exc

        if not response.choices:
            raise ModelTransportFailure("model response has no choices")
        choice = response.choices[0]
        message = choice.message

        text = message.content or ""
        tool_calls: list[ToolCall] = []
        if message.tool_calls:
            for tc in message.tool_calls:
                tool_calls.append(ToolCall(
                    id=tc.id or f"call_{uuid.uuid4().hex[:8]}",
                    name=tc.function.name,
                    raw_arguments=tc.function.arguments or "",
                ))

        usage_data: dict[str, int] = {}
        if response.usage:
            usage_data = {
                "input_tokens": response.usage.prompt_tokens,
                "output_tokens": response.usage.completion_tokens or 0,
            }

        return ChatResponse(
            stop_reason=_stop_reason(choice.finish_reason, bool(tool_calls)),
            text=text,
            tool_calls=tool_calls,
            usage=usage_data,
        )

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[StreamEvent]:
        payload = _build_payload(request)
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}

        finish_reason: str | None = None
        usage_data: dict[str, int] = {}
        saw_tool_call = False
        try:
            stream = await self.client.chat.completions.create(**payload)
            async for chunk in stream:
                if chunk.usage:
                    usage_data = {
                        "input_tokens": chunk.usage.prompt_tokens,
                        "output_tokens": chunk.usage.completion_tokens or 0,
                    }
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None and delta.content:
                    yield StreamEvent(type="text_delta", text=delta.content)
                if delta is not None and delta.tool_calls:
                    for tc in delta.tool_calls:
                        saw_tool_call = True
                        function = tc.function
                        yield StreamEvent(
                            type="tool_call_delta",
                            index=tc.index,
                            tool_call_id=tc.id,
                            tool_name=function.name if function else None,
                            arguments_delta=(function.arguments or "") if function else "",
                        )
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except OpenAIError as exc:
            raise transport_failure(exc, "model stream failed") from exc

        if finish_reason is None:
            raise ModelTransportFailure("model stream ended before a finish signal")

        yield StreamEvent(
            type="done",
            response=ChatResponse(
                stop_reason=_stop_reason(finish_reason, saw_tool_call),
                text="",
                tool_calls=[],
                usage=usage_data,
            ),
        )


def _build_payload(request: ChatRequest) -> dict:
    payload: dict = {
        "model": request.model,
        "messages": _build_messages(request.system_prompt, request.messages),
        "max_tokens": request.max_tokens,
        "temperature": request.temperature,
    }
    if request.tools:
        payload["tools"] = _build_tools(request.tools)
        payload["parallel_tool_calls"] = request.parallel_tool_calls
    return payload


def _stop_reason(finish_reason: str | None, has_tool_calls: bool) -> str:
    if finish_reason == "tool_calls" or (has_tool_calls and finish_reason != "length"):
        return "tool_use"
    if finish_reason == "length":
        return "max_tokens"
    return "end_turn"


def _build_messages(system_prompt: str, messages: list[Message]) -> list[dict]:
    """Convert internal Messages to OpenAI chat format."""
    result: list[dict] = []
    if system_prompt:
        result.append({"role": "system", "content": system_prompt})

    for msg in messages:
        if msg.role in {"system", "user"}:
            result.append({"role": msg.role, "content": msg.content})
        elif msg.role == "assistant":
            if not msg.content and not msg.tool_calls:
                continue
            entry: dict = {"role": "assistant", "content": msg.content or None}
            if msg.tool_calls:
                entry["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": tc.raw_arguments or "{}",
                        },
                    }
                    for tc in msg.tool_calls
                ]
            result.append(entry)
        elif msg.role == "tool":
            result.append({
                "role": "tool",
                "tool_call_id": msg.tool_call_id,
                "content": msg.content,
            })
    return result


def _build_tools(tools: list) -> list[dict]:
    """Convert ToolSchema list to OpenAI function-calling format."""
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.input_schema,
            },
        }
        for t in tools
    ]


def transport_failure(exc: OpenAIError, action: str) -> ModelTransportFailure:
    """Map an SDK error onto the failure the API layer reports."""
    message = f"{action}: {exc}"
    if isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        return ProviderAuthFailure(message)
    if isinstance(exc, RateLimitError):
        return ProviderRateLimited(message)
    if isinstance(exc, APITimeoutError):
        return ProviderTimeout(message)
    return ModelTransportFailure(message)
