"""Backend implementations for LLM inference."""

from q_cli.backends.anthropic import AnthropicBackend
from q_cli.backends.base import Backend, GenerateRequest, GenerateResponse
from q_cli.backends.ollama import OllamaBackend
from q_cli.backends.openai_compat import OpenAICompatBackend

__all__ = [
    "AnthropicBackend",
    "Backend",
    "GenerateRequest",
    "GenerateResponse",
    "OllamaBackend",
    "OpenAICompatBackend",
]
