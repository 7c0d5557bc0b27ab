"""Prompt assembly for q.

Handles the system prompt and wrapping of piped (untrusted) context.
"""

from __future__ import annotations

import re

from q_cli.env_info import EnvironmentInfo, format_env_for_prompt

SYSTEM_PROMPT = """You are a helpful command-line assistant. Your responses should be:

- Concise and actionable - get straight to the point
- Use fenced code blocks for shell commands and code snippets
- Include clear warnings for destructive or irreversible operations
- Never auto-execute commands - always show them for the user to copy/paste
- Prioritize copy/paste-ready solutions
- When showing commands, prefer one-liners when practical
- If multiple steps are needed, number them clearly

Do not include unnecessary preamble or excessive explanations unless the user specifically asks for details."""

CONTEXT_OPEN = "<context>"
CONTEXT_CLOSE = "</context>"

# A closing tag in any casing, with any run of backslashes before the slash.
# Escaping adds one backslash and unescaping removes one, so the rewrite is
# reversible even when the context already holds escaped tags.
_CLOSE_TAG_RE = re.compile(r"<(\\*)/(context)>", re.IGNORECASE)
_ESCAPED_CLOSE_TAG_RE = re.compile(r"<\\(\\*)/(context)>", re.IGNORECASE)


def build_system_prompt(env: EnvironmentInfo | None = None) -> str:
    """Return the system prompt, with the user's environment if known."""
    if env is None:
        return SYSTEM_PROMPT
    return f"{SYSTEM_PROMPT}\n\nUser environment:\n{format_env_for_prompt(env)}"


def escape_context(context: str) -> str:
    """Defuse closing markers inside untrusted context.

    ``</context>`` becomes ``<\\/context>`` so the model cannot be told the
    context block ended early.
    """
    return _CLOSE_TAG_RE.sub(r"<\\\1/\2>", context)


def unescape_context(escaped: str) -> str:
    """Reverse ``escape_context``."""
    return _ESCAPED_CLOSE_TAG_RE.sub(r"<\1/\2>", escaped)


def build_user_prompt(query: str, context: str | None = None) -> str:
    """Build the user message from a trusted query and optional context."""
    if not context:
        return query

    return (
        f"{CONTEXT_OPEN}\n{escape_context(context)}\n{CONTEXT_CLOSE}\n\n"
        f"Question: {query}"
    )
