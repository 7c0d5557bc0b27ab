"""Terminal escape-sequence handling for model output.

Model output is untrusted: it can carry cursor movement, OSC title/clipboard
writes, or colour codes meant to disguise a command. Everything shown on the
terminal passes through ``AnsiStripper`` and everything copied to the
clipboard through ``sanitize_for_clipboard``.
"""

from __future__ import annotations

import re

# ESC and the 8-bit CSI byte both open a sequence.
INTRODUCERS = "\x1b\x9b"

# Grammar from the ansi-regex package: an OSC-like body terminated by BEL,
# or a CSI-like parameter list ending in a final byte.
_ANSI_PATTERN = (
    r"[\x1b\x9b][\[\]()#;?]*"
    r"(?:"
    r"(?:(?:(?:;[-a-zA-Z0-9/#&.:=?%@~_]+)*"
    r"|[a-zA-Z0-9]+(?:;[-a-zA-Z0-9/#&.:=?%@~_]*)*)?\x07)"
    r"|(?:(?:[0-9]{1,4}(?:;[0-9]{0,4})*)?[0-9A-PR-TZcf-nq-uy=><~])"
    r")"
)
ANSI_RE = re.compile(_ANSI_PATTERN)

# Every string that some branch of ANSI_RE could still extend. While the
# pending suffix matches this, more input may change how it is classified.
_OPEN_RE = re.compile(
    r"[\x1b\x9b][\[\]()#;?]*"
    r"(?:(?:;[-a-zA-Z0-9/#&.:=?%@~_]*)*"
    r"|[a-zA-Z0-9]+(?:;[-a-zA-Z0-9/#&.:=?%@~_]*)*"
    r"|[0-9]{1,4}(?:;[0-9]{0,4})*)"
)

# Upper bound on a held-back suffix; past this it is classified as-is.
MAX_PENDING = 4096

_CLIPBOARD_UNSAFE_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def strip_ansi(text: str) -> str:
    """Remove every complete escape sequence from ``text``."""
    if not text:
        return text
    return ANSI_RE.sub("", text)


def _last_introducer(text: str) -> int:
    return max(text.rfind(ch) for ch in INTRODUCERS)


def is_open_sequence(candidate: str) -> bool:
    """True if ``candidate`` could still grow into a different sequence."""
    return _OPEN_RE.fullmatch(candidate) is not None


class AnsiStripper:
    """Streaming escape-sequence stripper.

    One instance belongs to one query. ``feed`` returns the text that is safe
    to show now; an escape prefix that may still be completed by the next
    fragment is held back. Call ``flush`` once the stream ends.

    Concatenating every ``feed`` result and the ``flush`` result gives the
    same string as ``strip_ansi`` on the whole input, however it was split.
    """

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, fragment: str) -> str:
        self._buffer += fragment

        index = _last_introducer(self._buffer)
        if index == -1:
            return self._drain()

        candidate = self._buffer[index:]
        if len(candidate) > MAX_PENDING or not is_open_sequence(candidate):
            return self._drain()

        safe = self._buffer[:index]
        self._buffer = candidate
        return strip_ansi(safe)

    def flush(self) -> str:
        """Emit whatever is pending; unfinished sequences pass through."""
        return self._drain()

    def _drain(self) -> str:
        text, self._buffer = self._buffer, ""
        return strip_ansi(text)


def _hex_escape(match: re.Match[str]) -> str:
    return f"\\x{ord(match.group()):02X}"


def sanitize_for_clipboard(text: str) -> str:
    """Clean an answer for the clipboard.

    Escape sequences are removed, then any leftover C0 control character
    (other than tab, LF and CR) and DEL is written as ``\\xHH``.
    """
    if not text:
        return text
    return _CLIPBOARD_UNSAFE_RE.sub(_hex_escape, strip_ansi(text))
