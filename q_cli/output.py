"""Where answer text goes: the terminal, or a JSON document."""

from __future__ import annotations

import json
import sys
from typing import TextIO

from q_cli.ansi import AnsiStripper


class AnswerWriter:
    """Write untrusted answer text to a terminal stream.

    Each fragment goes through a fresh per-query ``AnsiStripper`` and is
    flushed immediately. ``close`` emits anything held back and makes sure
    the output ends with a newline. A ``partial`` close, used when the
    answer was cut short, leaves an untouched stream untouched.
    """

    def __init__(self, stream: TextIO | None = None):
        self.stream = stream if stream is not None else sys.stdout
        self._stripper = AnsiStripper()
        self._ends_with_newline = False
        self._written = False

    def write(self, fragment: str) -> None:
        self._emit(self._stripper.feed(fragment))

    def close(self, partial: bool = False) -> None:
        self._emit(self._stripper.flush())
        if partial and not self._written:
            return
        if not self._ends_with_newline:
            self._emit("\n")

    def _emit(self, text: str) -> None:
        if not text:
            return
        self.stream.write(text)
        self.stream.flush()
        self._written = True
        self._ends_with_newline = text.endswith("\n")


def format_json_output(text: str, provider_name: str, model_id: str) -> str:
    """Structured output for --json. Control characters end up JSON-escaped."""
    return json.dumps(
        {"text": text, "provider": provider_name, "model": model_id},
        indent=2,
    )
