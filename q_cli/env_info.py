"""Environment detection for context-aware terminal answers.

Every probe falls back to ``"unknown"`` instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
import platform
import sys

_OS_NAMES = {
    "darwin": "macOS",
    "linux": "Linux",
    "win32": "Windows",
}


@dataclass(frozen=True)
class EnvironmentInfo:
    """Where the user is running q."""

    os: str
    os_version: str
    arch: str
    shell: str
    terminal: str


def get_environment_info() -> EnvironmentInfo:
    return EnvironmentInfo(
        os=_os_name(),
        os_version=_os_version(),
        arch=_arch(),
        shell=_shell(),
        terminal=_terminal(),
    )


def _os_name() -> str:
    return _OS_NAMES.get(sys.platform, sys.platform or "unknown")


def _os_version() -> str:
    try:
        return platform.release() or "unknown"
    except OSError:
        return "unknown"


def _arch() -> str:
    return platform.machine() or "unknown"


def _shell() -> str:
    if sys.platform == "win32":
        comspec = os.environ.get("COMSPEC", "").lower()
        if "powershell" in comspec:
            return "powershell"
        if "cmd" in comspec:
            return "cmd"
        if os.environ.get("PSModulePath"):
            return "powershell"
        return "cmd"

    shell = os.environ.get("SHELL") or "/bin/sh"
    return shell.rstrip("/").rsplit("/", 1)[-1] or "sh"


def _terminal() -> str:
    term_program = os.environ.get("TERM_PROGRAM")
    if term_program:
        return term_program

    if os.environ.get("WT_SESSION"):
        return "Windows Terminal"

    term = os.environ.get("TERM")
    if term and term != "dumb":
        return term

    return "unknown"


def format_env_for_prompt(env: EnvironmentInfo) -> str:
    return "\n".join(
        [
            f"- OS: {env.os} {env.os_version} ({env.arch})",
            f"- Shell: {env.shell}",
            f"- Terminal: {env.terminal}",
        ]
    )


def format_env_for_debug(env: EnvironmentInfo) -> str:
    return (
        f"Environment: OS={env.os} {env.os_version} ({env.arch}), "
        f"Shell={env.shell}, Terminal={env.terminal}"
    )
