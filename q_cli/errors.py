"""Error types for q.

Every error the CLI reports on purpose is a ``QError`` carrying the exit
code the process should end with.
"""

from __future__ import annotations


class QError(Exception):
    """Base error with a stable process exit code."""

    exit_code = 1

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigNotFoundError(QError):
    exit_code = 2

    def __init__(self, path: str):
        super().__init__(
            f"Config file not found: {path}\nRun 'q config init' to create one."
        )
        self.path = path


class ConfigParseError(QError):
    exit_code = 2

    def __init__(self, path: str, details: str):
        super().__init__(f"Failed to parse config at {path}:\n{details}")
        self.path = path
        self.details = details


class ConfigValidationError(QError):
    exit_code = 2

    def __init__(self, details: str):
        super().__init__(f"Invalid configuration:\n{details}")
        self.details = details


class ProviderNotFoundError(QError):
    exit_code = 2

    def __init__(self, provider_name: str, available: list[str] | None = None):
        message = f"Provider '{provider_name}' not found in config."
        if available:
            message += f"\nAvailable providers: {', '.join(available)}"
        message += "\nCheck your config file with 'q config path'."
        super().__init__(message)
        self.provider_name = provider_name


class MissingApiKeyError(QError):
    exit_code = 2

    def __init__(self, env_var: str, provider_name: str):
        super().__init__(
            f"Missing API key: Environment variable '{env_var}' is not set "
            f"for provider '{provider_name}'."
        )
        self.env_var = env_var
        self.provider_name = provider_name


class UsageError(QError):
    exit_code = 2


class ProviderError(QError):
    """The model provider failed mid-request. Fatal for the invocation."""

    exit_code = 1


class ClipboardError(QError):
    exit_code = 1


class McpError(QError):
    """A single MCP server misbehaved. Logged, never fatal."""

    def __init__(self, server_name: str, message: str):
        super().__init__(f"MCP server '{server_name}': {message}")
        self.server_name = server_name
