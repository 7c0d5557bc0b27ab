"""Anthropic (Claude) backend for q.

Speaks the Messages API. Requests arrive in the OpenAI message shape the
rest of q uses and are translated here: the system prompt becomes a
top-level field, assistant tool calls become ``tool_use`` blocks and tool
results become ``tool_result`` blocks in a user turn.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
import json
from typing import Any

import httpx

from q_cli.backends.base import Backend, GenerateRequest, GenerateResponse
from q_cli.types import ToolCall, parse_arguments

DEFAULT_ANTHROPIC_URL = "https://api.anthropic.com/v1"
ANTHROPIC_VERSION = "2023-06-01"

# The Messages API requires max_tokens on every request
DEFAULT_MAX_TOKENS = 4096


def _to_anthropic_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    for msg in messages:
        role = msg.get("role")

        if role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg.get("tool_call_id"),
                "content": msg.get("content") or "",
            }
            # Consecutive tool results share one user turn
            previous = converted[-1] if converted else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
            ):
                previous["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
            continue

        if role == "assistant" and msg.get("tool_calls"):
            blocks: list[dict[str, Any]] = []
            if msg.get("content"):
                blocks.append({"type": "text", "text": msg["content"]})
            for tc in msg["tool_calls"]:
                function = tc.get("function") or {}
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": tc.get("id"),
                        "name": function.get("name", ""),
                        "input": parse_arguments(function.get("arguments")),
                    }
                )
            converted.append({"role": "assistant", "content": blocks})
            continue

        converted.append({"role": role, "content": msg.get("content") or ""})
    return converted


def _to_anthropic_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """OpenAI function definitions to Anthropic tool definitions."""
    converted = []
    for tool in tools:
        function = tool.get("function") or {}
        converted.append(
            {
                "name": function.get("name", ""),
                "description": function.get("description", ""),
                "input_schema": function.get("parameters") or {"type": "object"},
            }
        )
    return converted


def _parse_message(data: dict[str, Any], request: GenerateRequest) -> GenerateResponse:
    """Normalize a Messages API response.

    Response shape:
        {
            "content": [{"type": "text", "text": "..."},
                        {"type": "tool_use", "id": "...", "name": "...", "input": {...}}],
            "model": "...",
            "stop_reason": "end_turn" | "tool_use" | "max_tokens",
            "usage": {"input_tokens": 12, "output_tokens": 34}
        }
    """
    texts = []
    tool_calls = []
    for block in data.get("content") or []:
        block_type = block.get("type")
        if block_type == "text":
            texts.append(block.get("text", ""))
        elif block_type == "tool_use":
            tool_calls.append(
                ToolCall.from_wire(block.get("name", ""), block.get("input"), id=block.get("id"))
            )

    usage = data.get("usage") or {}
    stop_reason = data.get("stop_reason") or "stop"
    return GenerateResponse(
        content="".join(texts),
        tokens_prompt=usage.get("input_tokens", 0),
        tokens_completion=usage.get("output_tokens", 0),
        model=data.get("model", request.model),
        finish_reason="tool_calls" if tool_calls else stop_reason,
        tool_calls=tool_calls,
        raw_response=data,
    )


class AnthropicBackend(Backend):
    """Anthropic Messages API backend."""

    def __init__(
        self,
        base_url: str = DEFAULT_ANTHROPIC_URL,
        api_key: str | None = None,
        timeout: int = 120,
        headers: dict[str, str] | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
            **(headers or {}),
        }
        if api_key:
            self.headers["x-api-key"] = api_key

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/messages"

    def _payload(self, request: GenerateRequest, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            "system": request.system,
            "messages": _to_anthropic_messages(request.messages),
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "stream": stream,
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        return payload

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        return await self.generate_with_tools(request, [])

    async def generate_stream(self, request: GenerateRequest) -> AsyncIterator[str]:
        """Yield text deltas from the Messages event stream."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            async with client.stream(
                "POST",
                self.messages_url,
                json=self._payload(request, stream=True),
                headers=self.headers,
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    try:
                        event = json.loads(line[5:].strip())
                    except json.JSONDecodeError:
                        continue

                    event_type = event.get("type")
                    if event_type == "error":
                        error = event.get("error") or {}
                        raise RuntimeError(error.get("message") or "stream error")
                    if event_type == "message_stop":
                        break
                    if event_type == "content_block_delta":
                        delta = event.get("delta") or {}
                        if delta.get("type") == "text_delta" and delta.get("text"):
                            yield delta["text"]

    async def generate_with_tools(
        self,
        request: GenerateRequest,
        tools: list[dict[str, Any]],
    ) -> GenerateResponse:
        payload = self._payload(request, stream=False)
        if tools:
            payload["tools"] = _to_anthropic_tools(tools)
            payload["tool_choice"] = {"type": "auto"}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.messages_url, json=payload, headers=self.headers)
            response.raise_for_status()
            return _parse_message(response.json(), request)
