"""q - quick AI answers in the terminal, with sanitized output and MCP tools."""

__version__ = "0.3.0"

from q_cli.ansi import AnsiStripper, sanitize_for_clipboard, strip_ansi
from q_cli.config import Config, load_config
from q_cli.mcp_manager import McpManager
from q_cli.orchestrator import ToolOrchestrator
from q_cli.prompt import build_user_prompt
from q_cli.run import run_query, run_streaming_query

__all__ = [
    "AnsiStripper",
    "Config",
    "McpManager",
    "ToolOrchestrator",
    "build_user_prompt",
    "load_config",
    "run_query",
    "run_streaming_query",
    "sanitize_for_clipboard",
    "strip_ansi",
]
