"""OpenAI-compatible backend for q.

Works with OpenAI itself and anything speaking its chat completions API:
llama.cpp server, vLLM, LM Studio, gateways.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
import json
from typing import Any

import httpx

from q_cli.backends.base import Backend, GenerateRequest, GenerateResponse
from q_cli.types import ToolCall

DEFAULT_OPENAI_URL = "https://api.openai.com/v1"


def _parse_completion(data: dict[str, Any], request: GenerateRequest) -> GenerateResponse:
    """Normalize a chat completion body, including any tool calls."""
    choice = data["choices"][0]
    message = choice.get("message") or {}
    usage = data.get("usage") or {}

    tool_calls = []
    for tc in message.get("tool_calls") or []:
        function = tc.get("function") or {}
        tool_calls.append(
            ToolCall.from_wire(
                function.get("name", ""),
                function.get("arguments"),
                id=tc.get("id"),
            )
        )

    return GenerateResponse(
        content=message.get("content") or "",
        tokens_prompt=usage.get("prompt_tokens", 0),
        tokens_completion=usage.get("completion_tokens", 0),
        model=data.get("model", request.model),
        finish_reason=choice.get("finish_reason") or "stop",
        tool_calls=tool_calls,
        raw_response=data,
    )


def _sse_delta(line: str) -> str | None:
    """Content delta carried by one SSE line, if any."""
    if not line.startswith("data:"):
        return None
    try:
        data = json.loads(line[5:].strip())
    except json.JSONDecodeError:
        return None
    choices = data.get("choices") or []
    if not choices:
        return None
    return (choices[0].get("delta") or {}).get("content") or None


class OpenAICompatBackend(Backend):
    """OpenAI-compatible LLM backend."""

    def __init__(
        self,
        base_url: str = DEFAULT_OPENAI_URL,
        api_key: str | None = None,
        timeout: int = 120,
        headers: dict[str, str] | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"

    @property
    def completions_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _payload(self, request: GenerateRequest, stream: bool) -> dict[str, Any]:
        # System prompt travels as the first message
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [
                {"role": "system", "content": request.system},
                *request.messages,
            ],
            "stream": stream,
        }
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        return payload

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        return await self.generate_with_tools(request, [])

    async def generate_stream(self, request: GenerateRequest) -> AsyncIterator[str]:
        """Yield content deltas from a server-sent event stream."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            async with client.stream(
                "POST",
                self.completions_url,
                json=self._payload(request, stream=True),
                headers=self.headers,
            ) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if line.strip() == "data: [DONE]":
                        break
                    content = _sse_delta(line)
                    if content:
                        yield content

    async def generate_with_tools(
        self,
        request: GenerateRequest,
        tools: list[dict[str, Any]],
    ) -> GenerateResponse:
        """One non-streaming completion; ``tools`` are offered with tool_choice=auto."""
        payload = self._payload(request, stream=False)
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.completions_url, json=payload, headers=self.headers)
            response.raise_for_status()
            return _parse_completion(response.json(), request)
