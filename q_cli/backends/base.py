"""Abstract backend interface for LLM inference."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from q_cli.types import ToolCall


@dataclass
class GenerateRequest:
    """Request to generate a response."""

    messages: list[dict]  # OpenAI-style messages
    system: str
    model: str
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass
class GenerateResponse:
    """Response from generation."""

    content: str
    tokens_prompt: int
    tokens_completion: int
    model: str
    finish_reason: str  # "stop", "length", "error", "tool_calls"
    tool_calls: list[ToolCall] = field(default_factory=list)
    raw_response: Any = None


class Backend(ABC):
    """Abstract backend for LLM inference."""

    @abstractmethod
    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        """Generate a response (non-streaming)."""
        pass

    @abstractmethod
    def generate_stream(self, request: GenerateRequest) -> AsyncIterator[str]:
        """Generate a response with streaming."""
        pass

    @abstractmethod
    async def generate_with_tools(
        self, request: GenerateRequest, tools: list[dict[str, Any]]
    ) -> GenerateResponse:
        """Generate one step, letting the model request tool calls.

        ``tools`` are OpenAI-style function definitions.
        """
        pass
