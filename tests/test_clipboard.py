from unittest.mock import patch

import pyperclip
import pytest

from q_cli.clipboard import copy_to_clipboard
from q_cli.errors import ClipboardError


def test_copies_sanitized_answer():
    with patch("q_cli.clipboard.pyperclip.copy") as copy:
        copy_to_clipboard("\x1b[32mls -la\x1b[0m \x07")

    copy.assert_called_once_with("ls -la \\x07")


def test_bel_right_after_a_sequence_is_part_of_it():
    with patch("q_cli.clipboard.pyperclip.copy") as copy:
        copy_to_clipboard("\x1b[32mls -la\x1b[0m\x07")

    copy.assert_called_once_with("ls -la")


def test_clipboard_failure_is_clipboard_error():
    error = pyperclip.PyperclipException("no copy/paste mechanism")
    with patch("q_cli.clipboard.pyperclip.copy", side_effect=error):
        with pytest.raises(ClipboardError) as exc_info:
            copy_to_clipboard("text")

    assert exc_info.value.exit_code == 1
    assert "no copy/paste mechanism" in exc_info.value.message
