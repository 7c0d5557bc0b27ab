"""Piped input handling.

``cat log | q why did this fail`` treats the pipe as context for the
question; ``echo "what is 2+2" | q`` treats the pipe as the question.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import sys
from typing import TextIO

from q_cli.errors import UsageError

MAX_QUERY_LENGTH = 5_000
MAX_CONTEXT_LENGTH = 50_000


class InputMode(str, Enum):
    ARGS = "args"
    STDIN = "stdin"
    CONTEXT = "context"


@dataclass
class StdinInput:
    content: str | None = None

    @property
    def has_input(self) -> bool:
        return bool(self.content)


@dataclass
class ResolvedInput:
    mode: InputMode
    query: str
    context: str | None = None


def read_stdin(stream: TextIO | None = None) -> StdinInput:
    """Read piped stdin. An interactive terminal yields no input."""
    stream = stream if stream is not None else sys.stdin
    if stream is None or stream.isatty():
        return StdinInput()
    try:
        content = stream.read().strip()
    except UnicodeDecodeError as e:
        raise UsageError(f"Piped input is not valid UTF-8 text: {e.reason}") from e
    return StdinInput(content or None)


def resolve_input(stdin_input: StdinInput, args_query: list[str] | tuple[str, ...]) -> ResolvedInput:
    """Decide which text is the question and which is context."""
    if stdin_input.has_input and args_query:
        return ResolvedInput(InputMode.CONTEXT, " ".join(args_query), stdin_input.content)

    if stdin_input.has_input:
        return ResolvedInput(InputMode.STDIN, stdin_input.content)

    return ResolvedInput(InputMode.ARGS, " ".join(args_query))


def validate_input(resolved: ResolvedInput) -> None:
    """Enforce length limits on the query and context."""
    if len(resolved.query) > MAX_QUERY_LENGTH:
        raise UsageError(
            f"Query too long ({len(resolved.query)} characters). "
            f"Maximum is {MAX_QUERY_LENGTH}."
        )
    if resolved.context and len(resolved.context) > MAX_CONTEXT_LENGTH:
        raise UsageError(
            f"Context too long ({len(resolved.context)} characters). "
            f"Maximum is {MAX_CONTEXT_LENGTH}."
        )
