"""Bounded tool-calling loop.

Each step asks the model for a response with the tool catalog attached.
If it asks for tools they are run one after another and their results are
appended to the conversation; otherwise its text is the answer. The loop
never runs more than ``max_steps`` model calls.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, TextIO

from rich.console import Console
from rich.markup import escape

from q_cli.ansi import strip_ansi
from q_cli.backends.base import Backend, GenerateRequest, GenerateResponse
from q_cli.errors import ProviderError
from q_cli.mcp_manager import McpTool, describe_error, render_tool_result
from q_cli.output import AnswerWriter
from q_cli.types import RunResult, ToolCall, ToolCallResult

logger = logging.getLogger(__name__)

MAX_TOOL_STEPS = 5

# Debug payloads longer than this are cut
DEBUG_PAYLOAD_LIMIT = 500

# Function names most providers accept
_WIRE_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]")
_WIRE_NAME_MAX = 64


def build_wire_names(names: list[str]) -> dict[str, str]:
    """Map provider-safe aliases to namespaced tool names.

    ``github.search`` becomes ``github_search``; clashes get a numeric suffix.
    """
    aliases: dict[str, str] = {}
    for name in names:
        base = _WIRE_UNSAFE_RE.sub("_", name)[:_WIRE_NAME_MAX]
        alias = base
        suffix = 2
        while alias in aliases:
            tail = f"_{suffix}"
            alias = base[: _WIRE_NAME_MAX - len(tail)] + tail
            suffix += 1
        aliases[alias] = name
    return aliases


def truncate(text: str, limit: int = DEBUG_PAYLOAD_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... [{len(text) - limit} more chars]"


class ToolOrchestrator:
    """Drive the model through tool calls until it answers or runs out of steps."""

    def __init__(
        self,
        backend: Backend,
        tools: dict[str, McpTool],
        max_steps: int = MAX_TOOL_STEPS,
        debug: bool = False,
        echo: bool = True,
        stdout: TextIO | None = None,
        console: Console | None = None,
    ):
        self.backend = backend
        self.tools = tools
        self.max_steps = max_steps
        self.debug = debug
        self.echo = echo
        self.stdout = stdout
        # Progress and debug output only ever go to stderr
        self.console = console or Console(stderr=True, highlight=False)
        self._aliases = build_wire_names(list(tools))

    def tool_definitions(self) -> list[dict[str, Any]]:
        """The catalog in OpenAI function format, under wire-safe names."""
        definitions = []
        for alias, name in self._aliases.items():
            tool = self.tools[name]
            definitions.append(
                {
                    "type": "function",
                    "function": {
                        "name": alias,
                        "description": tool.description or name,
                        "parameters": tool.input_schema or {"type": "object", "properties": {}},
                    },
                }
            )
        return definitions

    async def run(self, model: str, system_prompt: str, user_prompt: str) -> RunResult:
        """Run the loop and return the final, unsanitized answer."""
        definitions = self.tool_definitions()
        messages: list[dict[str, Any]] = [{"role": "user", "content": user_prompt}]
        results: list[ToolCallResult] = []
        response: GenerateResponse | None = None
        budget = self.max_steps
        step = 0

        while budget > 0:
            budget -= 1
            step += 1
            response = await self._step(model, system_prompt, messages, definitions)

            if not response.tool_calls:
                break

            if budget == 0:
                logger.warning(
                    "Tool step budget (%d) exhausted; returning partial answer",
                    self.max_steps,
                )
                break

            call_ids = [
                call.id or f"call_{step}_{index}"
                for index, call in enumerate(response.tool_calls)
            ]
            messages.append(_assistant_message(response, call_ids))

            for call, call_id in zip(response.tool_calls, call_ids):
                result = await self.execute(call, call_id)
                results.append(result)
                messages.append(
                    {"role": "tool", "tool_call_id": call_id, "content": result.to_content()}
                )

        text = response.content if response is not None else ""
        if self.echo:
            writer = AnswerWriter(self.stdout)
            writer.write(text)
            writer.close()

        return RunResult(text=text, tool_results=results)

    async def _step(
        self,
        model: str,
        system_prompt: str,
        messages: list[dict[str, Any]],
        definitions: list[dict[str, Any]],
    ) -> GenerateResponse:
        request = GenerateRequest(messages=list(messages), system=system_prompt, model=model)
        try:
            return await self.backend.generate_with_tools(request, definitions)
        except Exception as e:
            raise ProviderError(f"AI request failed: {describe_error(e)}") from e

    async def execute(self, call: ToolCall, call_id: str) -> ToolCallResult:
        """Run one tool call. Failures become failed results, never exceptions."""
        name = self._aliases.get(call.name, call.name)
        self.console.print(f"[dim]⚙ {escape(name)}[/dim]")
        if self.debug:
            self._debug_payload("input", json.dumps(call.arguments))

        tool = self.tools.get(name)
        if tool is None:
            result = ToolCallResult(call_id, name, error=f"Tool '{name}' not found")
        elif call.arguments_error is not None:
            result = ToolCallResult(
                call_id, name, error=f"Invalid arguments for '{name}': {call.arguments_error}"
            )
        else:
            try:
                outcome = await tool.call(call.arguments)
            except Exception as e:
                result = ToolCallResult(call_id, name, error=describe_error(e))
            else:
                rendered = render_tool_result(outcome)
                if outcome.isError:
                    result = ToolCallResult(call_id, name, error=rendered or "Tool reported an error")
                else:
                    result = ToolCallResult(call_id, name, output=rendered)

        if result.success:
            if self.debug:
                self._debug_payload("output", result.output)
        else:
            self.console.print(f"[red]✗ {escape(name)}: {escape(strip_ansi(result.error))}[/red]")

        return result

    def _debug_payload(self, label: str, payload: str) -> None:
        self.console.print(f"[dim]  {label}: {escape(truncate(strip_ansi(payload)))}[/dim]")


def _assistant_message(response: GenerateResponse, call_ids: list[str]) -> dict[str, Any]:
    """Echo the model's tool request back into the conversation."""
    return {
        "role": "assistant",
        "content": response.content or None,
        "tool_calls": [
            {
                "id": call_id,
                "type": "function",
                "function": {
                    "name": call.name,
                    "arguments": json.dumps(call.arguments),
                },
            }
            for call, call_id in zip(response.tool_calls, call_ids)
        ],
    }
