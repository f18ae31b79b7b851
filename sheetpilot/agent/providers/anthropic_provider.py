"""Anthropic Messages API provider with native tool_use support."""
from __future__ import annotations

import json

from anthropic import (
    AnthropicError,
    APITimeoutError,
    AsyncAnthropic,
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
)

from sheetpilot.agent.messages import ChatResponse, Message, ToolCall
from sheetpilot.agent.providers.base import ChatRequest, ProviderAdapter
from sheetpilot.errors import (
    ModelTransportFailure,
    ProviderAuthFailure,
    ProviderRateLimited,
    ProviderTimeout,
)


class AnthropicProvider(ProviderAdapter):
    def __init__(self, api_key: str, client: AsyncAnthropic | None = None) -> None:
        self.client = client or AsyncAnthropic(api_key=api_key)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        messages = _build_messages(request.messages)
        tools = _build_tools(request.tools) if request.tools else []

        payload: dict = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": messages,
        }
        if request.system_prompt:
            payload["system"] = request.system_prompt
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = {
                "type": "auto",
                "disable_parallel_tool_use": not request.parallel_tool_calls,
            }
        if request.temperature is not None:
            payload["temperature"] = request.temperature

        try:
            response = await self.client.messages.create(**payload)
        except AnthropicError as exc:
            raise _transport_failure(exc) from exc

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(
                    id=block.id,
                    name=block.name,
                    raw_arguments=json.dumps(block.input if isinstance(block.input, dict) else {}),
                ))

        if response.stop_reason == "tool_use" or tool_calls:
            stop_reason = "tool_use"
        elif response.stop_reason == "max_tokens":
            stop_reason = "max_tokens"
        else:
            stop_reason = "end_turn"

        return ChatResponse(
            stop_reason=stop_reason,
            text="\n".join(text_parts),
            tool_calls=tool_calls,
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )


def _build_messages(messages: list[Message]) -> list[dict]:
    """Convert internal Messages to Anthropic format.

    Consecutive tool results are folded into a single user turn, and system
    messages are dropped (the system prompt travels separately).
    """
    result: list[dict] = []
    for msg in messages:
        if msg.role == "user":
            result.append({"role": "user", "content": msg.content})
        elif msg.role == "assistant":
            if not msg.content and not msg.tool_calls:
                continue
            content: list[dict] = []
            if msg.content:
                content.append({"type": "text", "text": msg.content})
            for tc in msg.tool_calls:
                content.append({
                    "type": "tool_use",
                    "id": tc.id,
                    "name": tc.name,
                    "input": tc.parsed_arguments() or {},
                })
            result.append({"role": "assistant", "content": content})
        elif msg.role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id,
                "content": msg.content,
                "is_error": _is_error_content(msg.content),
            }
            previous = result[-1] if result else None
            if previous and previous["role"] == "user" and isinstance(previous["content"], list):
                previous["content"].append(block)
            else:
                result.append({"role": "user", "content": [block]})
    return result


def _is_error_content(content: str) -> bool:
    try:
        parsed = json.loads(content)
    except (json.JSONDecodeError, ValueError):
        return False
    return isinstance(parsed, dict) and "error" in parsed


def _build_tools(tools: list) -> list[dict]:
    """Convert ToolSchema list to Anthropic tool format."""
    return [
        {
            "name": t.name,
            "description": t.description,
            "input_schema": t.input_schema,
        }
        for t in tools
    ]


def _transport_failure(exc: AnthropicError) -> ModelTransportFailure:
    message = f"model request failed: {exc}"
    if isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        return ProviderAuthFailure(message)
    if isinstance(exc, RateLimitError):
        return ProviderRateLimited(message)
    if isinstance(exc, APITimeoutError):
        return ProviderTimeout(message)
    return ModelTransportFailure(message)
