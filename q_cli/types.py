"""Tool-calling data types shared by backends and the orchestrator.

Backends normalize whatever their provider returns into ``ToolCall``; the
orchestrator answers each call with a ``ToolCallResult``.
"""

from dataclasses import dataclass, field
import json
from typing import Any


@dataclass
class ToolCall:
    """A model-issued request to run one tool.

    ``name`` is the namespaced catalog name, ``<server>.<tool>``. When the
    provider sent arguments that cannot be used, ``arguments`` is empty and
    ``arguments_error`` says why; the call is then never executed.
    """
    name: str
    arguments: dict[str, Any]
    id: str | None = None
    arguments_error: str | None = None

    @classmethod
    def from_wire(cls, name: str, raw_arguments: Any, id: str | None = None) -> "ToolCall":
        try:
            return cls(name, parse_arguments(raw_arguments), id)
        except ValueError as e:
            return cls(name, {}, id, arguments_error=str(e))


@dataclass
class ToolCallResult:
    """Outcome of executing a ToolCall, fed back to the model next step."""
    call_id: str | None
    tool_name: str
    output: Any = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_content(self) -> str:
        """Serialize for a ``tool`` role message."""
        if self.error is not None:
            return json.dumps({"error": self.error})
        if isinstance(self.output, str):
            return self.output
        return json.dumps(self.output, default=str)


def parse_arguments(raw: Any) -> dict[str, Any]:
    """Normalize tool-call arguments that may arrive as a JSON string.

    Raises ValueError when they are not a JSON object.
    """
    if raw is None:
        return {}
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"arguments are not valid JSON ({e.msg})") from e
    if not isinstance(raw, dict):
        raise ValueError("arguments must be a JSON object")
    return raw


@dataclass
class RunResult:
    """The full, unsanitized answer to one query."""
    text: str
    tool_results: list[ToolCallResult] = field(default_factory=list)
