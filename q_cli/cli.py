"""q CLI entry point.

The answer goes to stdout; everything else (errors, warnings, tool
progress, debug output) goes to stderr.
"""

from __future__ import annotations

import asyncio
import logging

import click
from rich.console import Console
from rich.markup import escape

from q_cli import __version__
from q_cli.clipboard import copy_to_clipboard
from q_cli.config import Config, get_config_path, init_config, load_config
from q_cli.env_info import format_env_for_debug, get_environment_info
from q_cli.errors import QError, UsageError
from q_cli.logs import setup_logging
from q_cli.mcp_manager import McpManager, McpTool
from q_cli.output import format_json_output
from q_cli.prompt import build_system_prompt
from q_cli.providers import ResolvedProvider, list_providers, resolve_provider
from q_cli.run import run_query
from q_cli.stdin import ResolvedInput, read_stdin, resolve_input, validate_input
from q_cli.types import RunResult

logger = logging.getLogger(__name__)

console = Console(stderr=True, soft_wrap=True)  # Errors and metadata to stderr

CONFIG_SUBCOMMANDS = ("path", "init")


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("query", nargs=-1)
@click.option("-p", "--provider", help="Override the default provider")
@click.option("-m", "--model", help="Override the default model")
@click.option("--copy/--no-copy", default=None, help="Copy the answer to the clipboard")
@click.option("--no-tools", is_flag=True, help="Do not connect to MCP servers")
@click.option("--json", "json_output", is_flag=True, help="Output structured JSON")
@click.option("--debug", is_flag=True, help="Debug logging to stderr")
@click.option("--config", "config_path", help="Config file path")
@click.option("-v", "--version", is_flag=True, help="Show version")
@click.pass_context
def main(
    ctx: click.Context,
    query: tuple[str, ...],
    provider: str | None,
    model: str | None,
    copy: bool | None,
    no_tools: bool,
    json_output: bool,
    debug: bool,
    config_path: str | None,
    version: bool,
) -> None:
    """q - quick AI answers from the command line.

    \b
    Examples:
        q how do I restart docker
        cat error.log | q what went wrong
        q -p openai -m gpt-4o what is recursion
        q config init                  Create an example config file
        q config path                  Print the config file path
        q providers                    List configured providers
    """
    setup_logging(debug)

    if version:
        click.echo(f"q {__version__}")
        return

    try:
        _dispatch(ctx, list(query), provider, model, copy, no_tools, json_output, debug, config_path)
    except QError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        raise SystemExit(e.exit_code)
    except KeyboardInterrupt:
        console.print("\n[dim]Interrupted[/dim]")
        raise SystemExit(130)
    except Exception as e:
        console.print(f"[red]Unexpected error: {escape(str(e))}[/red]")
        if debug:
            console.print_exception()
        raise SystemExit(1)


def _dispatch(
    ctx: click.Context,
    query: list[str],
    provider: str | None,
    model: str | None,
    copy: bool | None,
    no_tools: bool,
    json_output: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    command = query[0].lower() if query else None

    # Subcommands never touch stdin
    if command == "config":
        _config_command(query[1:])
        return

    if command == "providers":
        click.echo(list_providers(load_config(config_path)))
        return

    stdin_input = read_stdin()
    if not stdin_input.has_input and not query:
        click.echo(ctx.get_help())
        return

    resolved = resolve_input(stdin_input, query)
    logger.debug("Mode: %s", resolved.mode.value)
    validate_input(resolved)

    logger.debug("Loading config...")
    config = load_config(config_path)
    logger.debug("Resolving provider: %s", provider or config.default.provider)
    target = resolve_provider(config, provider, model)

    env = get_environment_info()
    logger.debug("Query: %s", resolved.query)
    logger.debug("Provider: %s, Model: %s", target.provider_name, target.model_id)
    logger.debug(format_env_for_debug(env))

    result = asyncio.run(
        _answer(
            resolved,
            target,
            config,
            build_system_prompt(env),
            use_tools=not no_tools,
            json_output=json_output,
            debug=debug,
        )
    )

    if json_output:
        click.echo(format_json_output(result.text, target.provider_name, target.model_id))

    # --copy / --no-copy > Q_COPY > config default.copy
    should_copy = config.default.copy if copy is None else copy
    if should_copy:
        copy_to_clipboard(result.text)


def _config_command(args: list[str]) -> None:
    subcommand = args[0].lower() if args else None
    if subcommand == "path":
        click.echo(str(get_config_path()))
    elif subcommand == "init":
        click.echo(init_config())
    else:
        raise UsageError(
            f"Unknown config subcommand: '{subcommand or '(none)'}'\n"
            f"Valid subcommands: {', '.join(CONFIG_SUBCOMMANDS)}"
        )


async def _answer(
    resolved: ResolvedInput,
    target: ResolvedProvider,
    config: Config,
    system_prompt: str,
    use_tools: bool,
    json_output: bool,
    debug: bool,
) -> RunResult:
    """Run one query with MCP connections open for its whole duration."""
    async with McpManager() as manager:
        tools: dict[str, McpTool] = {}
        if use_tools:
            await manager.connect(config.mcp)
            tools = await manager.get_tools()
            if manager.server_count:
                logger.debug("MCP servers: %s", ", ".join(manager.connected_servers))
                logger.debug("Tools available: %d", len(tools))
        else:
            logger.debug("MCP tools disabled via --no-tools")

        return await run_query(
            target.backend,
            target.model_id,
            resolved.query,
            system_prompt,
            context=resolved.context,
            tools=tools,
            echo=not json_output,
            debug=debug,
        )


if __name__ == "__main__":
    main()
