"""Provider resolution: turn config plus CLI overrides into a backend."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os

from q_cli.backends import AnthropicBackend, Backend, OllamaBackend, OpenAICompatBackend
from q_cli.backends.anthropic import DEFAULT_ANTHROPIC_URL
from q_cli.backends.ollama import DEFAULT_OLLAMA_URL
from q_cli.backends.openai_compat import DEFAULT_OPENAI_URL
from q_cli.config import Config, ProviderConfig, ProviderType
from q_cli.errors import ConfigValidationError, MissingApiKeyError, ProviderNotFoundError

# Groq serves the OpenAI chat completions API
DEFAULT_GROQ_URL = "https://api.groq.com/openai/v1"

logger = logging.getLogger(__name__)


@dataclass
class ResolvedProvider:
    backend: Backend
    provider_name: str
    model_id: str


def _api_key(env_var: str | None, provider_name: str) -> str | None:
    if not env_var:
        return None
    api_key = os.environ.get(env_var)
    if not api_key:
        raise MissingApiKeyError(env_var, provider_name)
    return api_key


def _require(value: str | None, field_name: str, provider_name: str, example: str) -> str:
    if not value:
        raise ConfigValidationError(
            f"  - providers.{provider_name}.{field_name}: required (example: {example})"
        )
    return value


def _portkey_backend(config: ProviderConfig, provider_name: str) -> OpenAICompatBackend:
    """Portkey gateway: OpenAI chat API, routed and authenticated by headers."""
    base_url = _require(config.base_url, "base_url", provider_name, '"https://api.portkey.ai/v1"')
    slug = _require(
        config.provider_slug, "provider_slug", provider_name, '"@your-org/bedrock-provider"'
    )

    headers = {"x-portkey-provider": slug}
    portkey_key = _api_key(config.api_key_env, provider_name)
    if portkey_key:
        headers["x-portkey-api-key"] = portkey_key
    upstream_key = _api_key(config.provider_api_key_env, provider_name)
    if upstream_key:
        headers["Authorization"] = f"Bearer {upstream_key}"
    headers.update(config.headers)

    return OpenAICompatBackend(base_url=base_url, timeout=config.timeout, headers=headers)


def create_backend(config: ProviderConfig, provider_name: str) -> Backend:
    """Build the backend for one provider table."""
    if config.type is ProviderType.OLLAMA:
        return OllamaBackend(
            base_url=config.base_url or DEFAULT_OLLAMA_URL,
            timeout=config.timeout,
            headers=config.headers,
        )

    if config.type is ProviderType.ANTHROPIC:
        return AnthropicBackend(
            base_url=config.base_url or DEFAULT_ANTHROPIC_URL,
            api_key=_api_key(config.api_key_env, provider_name),
            timeout=config.timeout,
            headers=config.headers,
        )

    if config.type is ProviderType.PORTKEY:
        return _portkey_backend(config, provider_name)

    if config.type is ProviderType.OPENAI:
        base_url = config.base_url or DEFAULT_OPENAI_URL
    elif config.type is ProviderType.GROQ:
        base_url = config.base_url or DEFAULT_GROQ_URL
    elif config.type is ProviderType.OPENAI_COMPATIBLE:
        base_url = _require(
            config.base_url, "base_url", provider_name, '"http://localhost:1234/v1"'
        )
    else:
        raise ConfigValidationError(f"  - providers.{provider_name}.type: unsupported")

    return OpenAICompatBackend(
        base_url=base_url,
        api_key=_api_key(config.api_key_env, provider_name),
        timeout=config.timeout,
        headers=config.headers,
    )


def resolve_provider(
    config: Config,
    provider_override: str | None = None,
    model_override: str | None = None,
) -> ResolvedProvider:
    """Resolve a provider and model from config, with optional overrides."""
    provider_name = provider_override or config.default.provider
    provider_config = config.providers.get(provider_name)
    if provider_config is None:
        raise ProviderNotFoundError(provider_name, list(config.providers))

    model_id = model_override or config.default.model
    logger.debug(
        "Provider config: type=%s base_url=%s", provider_config.type.value, provider_config.base_url
    )

    return ResolvedProvider(
        backend=create_backend(provider_config, provider_name),
        provider_name=provider_name,
        model_id=model_id,
    )


def list_providers(config: Config) -> str:
    """List all configured providers."""
    lines = ["Configured providers:", ""]
    for name, provider in config.providers.items():
        marker = " (default)" if name == config.default.provider else ""
        lines.append(f"  {name}{marker} [{provider.type.value}]")
    lines += ["", f"Default model: {config.default.model}"]
    return "\n".join(lines)
