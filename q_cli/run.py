"""Query execution: one streamed model call, or the tool loop."""

from __future__ import annotations

import logging
from typing import TextIO

from q_cli.backends.base import Backend, GenerateRequest
from q_cli.errors import ProviderError
from q_cli.mcp_manager import McpTool, describe_error
from q_cli.orchestrator import ToolOrchestrator
from q_cli.output import AnswerWriter
from q_cli.prompt import build_user_prompt
from q_cli.types import RunResult

logger = logging.getLogger(__name__)


async def run_streaming_query(
    backend: Backend,
    model: str,
    system_prompt: str,
    user_prompt: str,
    stdout: TextIO | None = None,
) -> RunResult:
    """Stream one answer to stdout, sanitized, and return it unsanitized.

    Output already written is not retracted if the provider fails midway;
    held-back text is still flushed and the line ended.
    """
    request = GenerateRequest(
        messages=[{"role": "user", "content": user_prompt}],
        system=system_prompt,
        model=model,
    )
    writer = AnswerWriter(stdout)
    fragments: list[str] = []

    try:
        async for fragment in backend.generate_stream(request):
            fragments.append(fragment)
            writer.write(fragment)
    except Exception as e:
        writer.close(partial=True)
        raise ProviderError(f"AI request failed: {describe_error(e)}") from e

    writer.close()
    return RunResult(text="".join(fragments))


async def run_collected_query(
    backend: Backend,
    model: str,
    system_prompt: str,
    user_prompt: str,
) -> RunResult:
    """Single non-streaming call. Nothing is written to stdout."""
    request = GenerateRequest(
        messages=[{"role": "user", "content": user_prompt}],
        system=system_prompt,
        model=model,
    )
    try:
        response = await backend.generate(request)
    except Exception as e:
        raise ProviderError(f"AI request failed: {describe_error(e)}") from e
    return RunResult(text=response.content)


async def run_query(
    backend: Backend,
    model: str,
    query: str,
    system_prompt: str,
    context: str | None = None,
    tools: dict[str, McpTool] | None = None,
    echo: bool = True,
    debug: bool = False,
    stdout: TextIO | None = None,
) -> RunResult:
    """Answer one query, with tools when any are available.

    With ``echo`` off the answer is only returned (used for --json).
    """
    user_prompt = build_user_prompt(query, context)

    if tools:
        logger.debug("Running with %d tool(s)", len(tools))
        orchestrator = ToolOrchestrator(
            backend, tools, debug=debug, echo=echo, stdout=stdout
        )
        return await orchestrator.run(model, system_prompt, user_prompt)

    if not echo:
        return await run_collected_query(backend, model, system_prompt, user_prompt)

    return await run_streaming_query(backend, model, system_prompt, user_prompt, stdout)
