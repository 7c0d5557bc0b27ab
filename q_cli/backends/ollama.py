"""Ollama backend for q.

Handles communication with a local Ollama server for LLM inference.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
import json
from typing import Any

import httpx

from q_cli.backends.base import Backend, GenerateRequest, GenerateResponse
from q_cli.types import ToolCall, parse_arguments

DEFAULT_OLLAMA_URL = "http://localhost:11434"


def _to_ollama_messages(request: GenerateRequest) -> list[dict[str, Any]]:
    """Build messages in Ollama format.

    Ollama wants tool-call arguments as objects, not JSON strings.
    """
    messages: list[dict[str, Any]] = [{"role": "system", "content": request.system}]
    for msg in request.messages:
        if msg.get("tool_calls"):
            msg = {
                **msg,
                "content": msg.get("content") or "",
                "tool_calls": [
                    {
                        "function": {
                            "name": tc["function"]["name"],
                            "arguments": parse_arguments(tc["function"].get("arguments")),
                        }
                    }
                    for tc in msg["tool_calls"]
                ],
            }
        messages.append(msg)
    return messages


class OllamaBackend(Backend):
    """Ollama LLM backend."""

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_URL,
        timeout: int = 120,
        headers: dict[str, str] | None = None,
    ):
        # Accept the ".../api" form other Ollama clients use
        base_url = base_url.rstrip("/")
        if base_url.endswith("/api"):
            base_url = base_url[: -len("/api")]
        self.base_url = base_url
        self.timeout = timeout
        self.headers = dict(headers or {})

    def _payload(self, request: GenerateRequest, stream: bool) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if request.max_tokens is not None:
            options["num_predict"] = request.max_tokens
        if request.temperature is not None:
            options["temperature"] = request.temperature

        payload: dict[str, Any] = {
            "model": request.model,
            "messages": _to_ollama_messages(request),
            "stream": stream,
        }
        if options:
            payload["options"] = options
        return payload

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        """Generate a response (non-streaming)."""
        return await self.generate_with_tools(request, [])

    async def generate_stream(self, request: GenerateRequest) -> AsyncIterator[str]:
        """Generate a response with streaming (newline-delimited JSON)."""

        payload = self._payload(request, stream=True)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            async with client.stream(
                "POST",
                f"{self.base_url}/api/chat",
                json=payload,
                headers=self.headers,
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if "error" in data:
                        raise RuntimeError(str(data["error"]))
                    content = (data.get("message") or {}).get("content")
                    if content:
                        yield content

    async def generate_with_tools(
        self,
        request: GenerateRequest,
        tools: list[dict[str, Any]],
    ) -> GenerateResponse:
        """Generate one non-streaming step with optional tools."""

        payload = self._payload(request, stream=False)
        if tools:
            payload["tools"] = tools

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/api/chat",
                json=payload,
                headers=self.headers,
            )
            response.raise_for_status()
            data = response.json()

        message = data.get("message") or {}
        tool_calls = [
            ToolCall.from_wire(
                tc.get("function", {}).get("name", ""),
                tc.get("function", {}).get("arguments"),
                id=tc.get("id"),
            )
            for tc in message.get("tool_calls") or []
        ]

        return GenerateResponse(
            content=message.get("content") or "",
            tokens_prompt=data.get("prompt_eval_count", 0),
            tokens_completion=data.get("eval_count", 0),
            model=data.get("model", request.model),
            finish_reason="tool_calls" if tool_calls else data.get("done_reason", "stop"),
            tool_calls=tool_calls,
            raw_response=data,
        )
