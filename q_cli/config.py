"""Configuration loading for q.

Config precedence (lowest to highest):
1. $XDG_CONFIG_HOME/q/config.toml (or ~/.config/q/config.toml)
2. ./config.toml (project local)
3. Environment variables (Q_PROVIDER, Q_MODEL, Q_COPY)
4. CLI flags
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import os
from pathlib import Path
import re
import tomllib
from typing import Any

from q_cli.errors import (
    ConfigNotFoundError,
    ConfigParseError,
    ConfigValidationError,
)


class ProviderType(str, Enum):
    """Backend families q knows how to talk to."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OPENAI_COMPATIBLE = "openai_compatible"
    GROQ = "groq"
    PORTKEY = "portkey"
    OLLAMA = "ollama"


@dataclass
class ProviderConfig:
    """One [providers.<name>] table."""

    type: ProviderType
    api_key_env: str | None = None
    base_url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: int = 120
    # Portkey gateway routing
    provider_slug: str | None = None
    provider_api_key_env: str | None = None


@dataclass
class DefaultConfig:
    """The [default] table."""

    provider: str = ""
    model: str = ""
    copy: bool = False


@dataclass
class McpServerConfig:
    """One [mcp.servers.<name>] table. Only streamable HTTP is supported."""

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    timeout: int = 30


@dataclass
class McpConfig:
    """The [mcp] table."""

    enabled: bool = True
    servers: dict[str, McpServerConfig] = field(default_factory=dict)


@dataclass
class Config:
    """Root configuration."""

    default: DefaultConfig = field(default_factory=DefaultConfig)
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    mcp: McpConfig = field(default_factory=McpConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> Config:
        """Load configuration with precedence."""
        config_files = [get_config_path(), get_cwd_config_path()]
        if config_path:
            explicit = Path(config_path)
            if not explicit.exists():
                raise ConfigNotFoundError(str(explicit))
            config_files = [explicit]

        found = [path for path in config_files if path.exists()]
        if not found:
            raise ConfigNotFoundError(str(get_config_path()))

        config = cls()
        for path in found:
            config = _merge_config(config, _load_toml(path), source=str(path))

        config = _apply_env_overrides(config)
        _validate(config)
        return config


def get_config_dir() -> Path:
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home) / "q"
    return Path.home() / ".config" / "q"


def get_config_path() -> Path:
    return get_config_dir() / "config.toml"


def get_cwd_config_path() -> Path:
    return Path.cwd() / "config.toml"


def _load_toml(path: Path) -> dict[str, Any]:
    """Load TOML file."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError, UnicodeDecodeError) as e:
        raise ConfigParseError(str(path), str(e)) from e


def _expect_table(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigValidationError(f"  - {where}: expected a table")
    return value


def _expect_str(value: Any, where: str) -> str:
    if not isinstance(value, str):
        raise ConfigValidationError(f"  - {where}: expected a string")
    return value


def _expect_bool(value: Any, where: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigValidationError(f"  - {where}: expected a boolean")
    return value


def _expect_int(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigValidationError(f"  - {where}: expected a positive integer")
    return value


def _expect_headers(value: Any, where: str) -> dict[str, str]:
    table = _expect_table(value, where)
    for key, header_value in table.items():
        _expect_str(header_value, f"{where}.{key}")
    return dict(table)


def _parse_provider(name: str, data: Any) -> ProviderConfig:
    where = f"providers.{name}"
    data = _expect_table(data, where)

    if "type" not in data:
        raise ConfigValidationError(f"  - {where}.type: required")
    try:
        provider_type = ProviderType(_expect_str(data["type"], f"{where}.type"))
    except ValueError:
        allowed = ", ".join(t.value for t in ProviderType)
        raise ConfigValidationError(
            f"  - {where}.type: unknown provider type '{data['type']}' "
            f"(expected one of: {allowed})"
        ) from None

    provider = ProviderConfig(type=provider_type)
    if "api_key_env" in data:
        provider.api_key_env = _expect_str(data["api_key_env"], f"{where}.api_key_env")
    if "base_url" in data:
        provider.base_url = _expect_str(data["base_url"], f"{where}.base_url")
    if "headers" in data:
        provider.headers = _expect_headers(data["headers"], f"{where}.headers")
    if "provider_slug" in data:
        provider.provider_slug = _expect_str(data["provider_slug"], f"{where}.provider_slug")
    if "provider_api_key_env" in data:
        provider.provider_api_key_env = _expect_str(
            data["provider_api_key_env"], f"{where}.provider_api_key_env"
        )
    if "timeout" in data:
        provider.timeout = _expect_int(data["timeout"], f"{where}.timeout")
    return provider


def _parse_mcp_server(name: str, data: Any) -> McpServerConfig:
    where = f"mcp.servers.{name}"
    data = _expect_table(data, where)

    if "url" not in data:
        raise ConfigValidationError(f"  - {where}.url: required")
    server = McpServerConfig(url=_expect_str(data["url"], f"{where}.url"))
    if "headers" in data:
        server.headers = _expect_headers(data["headers"], f"{where}.headers")
    if "timeout" in data:
        server.timeout = _expect_int(data["timeout"], f"{where}.timeout")
    return server


def _merge_config(config: Config, data: dict[str, Any], source: str = "") -> Config:
    """Merge TOML data into config."""
    try:
        if "default" in data:
            default_data = _expect_table(data["default"], "default")
            if "provider" in default_data:
                config.default.provider = _expect_str(
                    default_data["provider"], "default.provider"
                )
            if "model" in default_data:
                config.default.model = _expect_str(default_data["model"], "default.model")
            if "copy" in default_data:
                config.default.copy = _expect_bool(default_data["copy"], "default.copy")

        if "providers" in data:
            providers_data = _expect_table(data["providers"], "providers")
            for name, provider_data in providers_data.items():
                config.providers[name] = _parse_provider(name, provider_data)

        if "mcp" in data:
            mcp_data = _expect_table(data["mcp"], "mcp")
            if "enabled" in mcp_data:
                config.mcp.enabled = _expect_bool(mcp_data["enabled"], "mcp.enabled")
            if "servers" in mcp_data:
                servers_data = _expect_table(mcp_data["servers"], "mcp.servers")
                for name, server_data in servers_data.items():
                    config.mcp.servers[name] = _parse_mcp_server(name, server_data)
    except ConfigValidationError as e:
        if source:
            raise ConfigValidationError(f"Invalid config at {source}:\n{e.details}") from None
        raise

    return config


_TRUTHY = ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides.

    Empty values are treated as unset.
    """
    env_map = {
        "Q_PROVIDER": ("provider", str),
        "Q_MODEL": ("model", str),
        "Q_COPY": ("copy", lambda x: x.lower() in _TRUTHY),
    }

    for env_var, (key, converter) in env_map.items():
        value = os.environ.get(env_var)
        if value:
            setattr(config.default, key, converter(value))

    return config


def _validate(config: Config) -> None:
    problems = []
    if not config.default.provider:
        problems.append("  - default.provider: required")
    if not config.default.model:
        problems.append("  - default.model: required")
    if problems:
        raise ConfigValidationError("\n".join(problems))

    for provider in config.providers.values():
        if provider.base_url:
            provider.base_url = interpolate_value(provider.base_url)
        provider.headers = {
            key: interpolate_value(value) for key, value in provider.headers.items()
        }

    for server in config.mcp.servers.values():
        server.url = interpolate_value(server.url)
        server.headers = {
            key: interpolate_value(value) for key, value in server.headers.items()
        }


# Variables that may be interpolated into URLs and headers. Anything else
# is refused so a config file cannot exfiltrate arbitrary secrets.
ALLOWED_INTERPOLATION_VARS = (
    # Provider API keys
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "GROQ_API_KEY",
    # Provider base URLs
    "OPENAI_BASE_URL",
    "OLLAMA_HOST",
    # MCP server credentials
    "GITHUB_TOKEN",
    "GITLAB_TOKEN",
    "MCP_TOKEN",
    # Proxy settings
    "HTTP_PROXY",
    "HTTPS_PROXY",
    "NO_PROXY",
    # Safe system vars
    "HOME",
    "USER",
    "HOSTNAME",
)

_INTERPOLATION_RE = re.compile(r"\$\{([^}]+)\}")


def interpolate_value(value: str) -> str:
    """Replace ``${VAR}`` references with allowlisted environment values."""

    def _replace(match: re.Match[str]) -> str:
        var_name = match.group(1)
        if var_name not in ALLOWED_INTERPOLATION_VARS:
            raise ConfigValidationError(
                f"Environment variable '{var_name}' is not allowed for interpolation.\n"
                f"Allowed variables: {', '.join(ALLOWED_INTERPOLATION_VARS)}"
            )
        env_value = os.environ.get(var_name)
        if env_value is None:
            raise ConfigValidationError(
                f"Environment variable '{var_name}' referenced in config but not set"
            )
        return env_value

    return _INTERPOLATION_RE.sub(_replace, value)


EXAMPLE_CONFIG = """\
# q configuration file
# Location: ~/.config/q/config.toml
#
# Config resolution order (later overrides earlier):
#   1. This file (XDG_CONFIG_HOME/q/config.toml or ~/.config/q/config.toml)
#   2. ./config.toml in current directory (project-specific)
#   3. Environment variables: Q_PROVIDER, Q_MODEL, Q_COPY

[default]
provider = "anthropic"
model = "claude-sonnet-4-20250514"
copy = false

[providers.anthropic]
type = "anthropic"
api_key_env = "ANTHROPIC_API_KEY"

[providers.openai]
type = "openai"
api_key_env = "OPENAI_API_KEY"

# Example: OpenAI-compatible provider (e.g., local LLM via LM Studio)
# [providers.local]
# type = "openai_compatible"
# base_url = "http://localhost:1234/v1"

# Example: Groq (OpenAI-compatible, default base_url)
# [providers.groq]
# type = "groq"
# api_key_env = "GROQ_API_KEY"

# Example: Portkey gateway
# [providers.portkey_internal]
# type = "portkey"
# base_url = "https://your-portkey-gateway.internal/v1"
# provider_slug = "@your-org/bedrock-provider"
# api_key_env = "PORTKEY_API_KEY"
# provider_api_key_env = "PROVIDER_API_KEY"

# Example: Ollama (local models)
# [providers.ollama]
# type = "ollama"
# base_url = "http://localhost:11434"

# MCP tool servers (streamable HTTP, header auth only)
# [mcp]
# enabled = true
#
# [mcp.servers.github]
# url = "https://api.githubcopilot.com/mcp/"
# headers = { Authorization = "Bearer ${GITHUB_TOKEN}" }  # Only allowlisted env vars
"""


def init_config() -> str:
    """Write the example config unless one already exists."""
    config_path = get_config_path()
    if config_path.exists():
        return f"Config already exists at: {config_path}"

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(EXAMPLE_CONFIG)
    return f"Created config file at: {config_path}"


# Convenience function
def load_config(config_path: str | None = None) -> Config:
    """Load configuration."""
    return Config.load(config_path)
