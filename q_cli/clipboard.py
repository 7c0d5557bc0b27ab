"""System clipboard access."""

from __future__ import annotations

import logging

import pyperclip

from q_cli.ansi import sanitize_for_clipboard
from q_cli.errors import ClipboardError

logger = logging.getLogger(__name__)


def copy_to_clipboard(answer: str) -> None:
    """Copy the sanitized answer to the clipboard."""
    try:
        pyperclip.copy(sanitize_for_clipboard(answer))
    except pyperclip.PyperclipException as e:
        raise ClipboardError(f"Failed to copy to clipboard: {e}") from e
    logger.debug("Copied %d chars to clipboard", len(answer))
