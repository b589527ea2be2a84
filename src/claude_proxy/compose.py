"""Composition helpers: build the provider registry and run the proxy.

Configuration priority for every value:
1. Function arguments (highest)
2. Environment variables
3. Config file (``--config`` or CLAUDE_PROXY_CONFIG)
4. Built-in defaults

Config file layout (YAML)::

    host: 127.0.0.1
    port: 8082
    default_provider: ollama
    providers:
      ollama:
        base_url: http://localhost:11434
        model: llama2
        model_mapping: "claude-3-haiku:llama2,claude-3-sonnet:llama2:13b"
      openrouter:          # extra providers need a kind
        kind: openai
        base_url: https://openrouter.ai/api/v1
        api_key: sk-...
        model: meta-llama/llama-3-70b-instruct
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from claude_proxy.gateway.errors import ConfigError
from claude_proxy.gateway.registry import ProviderConfig, ProviderRegistry, parse_model_mapping

logger = logging.getLogger(__name__)

CONFIG_ENV_KEY = "CLAUDE_PROXY_CONFIG"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8082
DEFAULT_PROVIDER = "ollama"


@dataclass(frozen=True)
class ProviderDefaults:
    kind: str
    base_url: str
    model: str


# Built-in providers; each can be overridden with P_BASE_URL, P_API_KEY, ...
BUILTIN_PROVIDERS: dict[str, ProviderDefaults] = {
    "ollama": ProviderDefaults("ollama", "http://localhost:11434", "llama2"),
    "openai": ProviderDefaults("openai", "https://api.openai.com/v1", "gpt-3.5-turbo"),
    "gemini": ProviderDefaults(
        "gemini", "https://generativelanguage.googleapis.com/v1beta", "gemini-pro"
    ),
    "vllm": ProviderDefaults("vllm", "http://localhost:8000/v1", "default"),
    "zai": ProviderDefaults("openai", "https://api.z-ai.com/v1", "z-ai-model"),
    "glm": ProviderDefaults("glm", "https://api.z.ai/api/anthropic", "GLM-4.6"),
}

_TIMEOUT_FIELDS = ("connect_timeout", "first_byte_timeout", "idle_timeout", "request_timeout")


@dataclass(frozen=True)
class ProxySettings:
    """Fully resolved server settings."""

    host: str
    port: int
    registry: ProviderRegistry
    debug_dir: str | None = None


def load_config_file(config_file: str | None, environ: Mapping[str, str]) -> dict[str, Any]:
    """Read the YAML config file, if one is configured.

    Raises:
        ConfigError: If the file is missing, unreadable or not a mapping.
    """
    config_path = config_file or environ.get(CONFIG_ENV_KEY)
    if not config_path:
        return {}

    try:
        content = Path(config_path).read_text()
    except OSError as e:
        raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
    try:
        file_config = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    if not isinstance(file_config, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    logger.debug("Loaded config file %s", config_path)
    return file_config


class _Resolver:
    """Looks a value up in arg > env > file > default order."""

    def __init__(self, environ: Mapping[str, str], file_config: Mapping[str, Any]) -> None:
        self._environ = environ
        self._file = file_config

    def get(self, arg: Any, env_key: str, file_value: Any, default: Any) -> Any:
        if arg is not None:
            return arg
        env_val = self._environ.get(env_key)
        if env_val:
            return env_val
        if file_value is not None and file_value != "":
            return file_value
        return default

    def file(self, key: str) -> Any:
        return self._file.get(key)


def _as_float(value: Any, what: str) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{what} must be a number, got {value!r}") from e
    if result <= 0:
        raise ConfigError(f"{what} must be positive, got {value!r}")
    return result


def _mapping(value: Any, what: str) -> dict[str, str]:
    if value is None:
        return {}
    if isinstance(value, str):
        return parse_model_mapping(value)
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}
    raise ConfigError(f"{what} must be a string or a mapping")


def _build_provider(
    name: str,
    defaults: ProviderDefaults | None,
    file_entry: Mapping[str, Any],
    resolve: _Resolver,
) -> ProviderConfig:
    prefix = name.upper()

    kind = file_entry.get("kind") or (defaults.kind if defaults else None)
    if not kind:
        raise ConfigError(f"Provider '{name}' needs a kind (one of the adapter kinds)")

    base_url = resolve.get(
        None, f"{prefix}_BASE_URL", file_entry.get("base_url"), defaults and defaults.base_url
    )
    model = resolve.get(
        None, f"{prefix}_MODEL", file_entry.get("model"), defaults and defaults.model
    )
    if not base_url or not model:
        raise ConfigError(f"Provider '{name}' needs base_url and model")

    mapping_value = resolve.get(
        None, f"MODEL_MAPPING_{prefix}", file_entry.get("model_mapping"), None
    )
    timeouts: dict[str, float] = {}
    for key in _TIMEOUT_FIELDS:
        value = resolve.get(None, f"{prefix}_{key.upper()}", file_entry.get(key), None)
        if value is not None:
            timeouts[key] = _as_float(value, f"{name}.{key}")

    return ProviderConfig(
        name=name,
        kind=str(kind),
        base_url=str(base_url),
        model=str(model),
        api_key=resolve.get(None, f"{prefix}_API_KEY", file_entry.get("api_key"), None),
        model_mapping=_mapping(mapping_value, f"{name}.model_mapping"),
        **timeouts,
    )


def build_settings(
    host: str | None = None,
    port: int | None = None,
    default_provider: str | None = None,
    config_file: str | None = None,
    debug_dir: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ProxySettings:
    """Resolve server settings and the provider registry.

    Every built-in provider is always registered; providers declared only in
    the config file are added when they name a ``kind``.

    Raises:
        ConfigError: On an unreadable config file or invalid values.
    """
    environ = os.environ if environ is None else environ
    file_config = load_config_file(config_file, environ)
    resolve = _Resolver(environ, file_config)

    file_providers = file_config.get("providers") or {}
    if not isinstance(file_providers, dict):
        raise ConfigError("'providers' in the config file must be a mapping")

    file_providers = {str(name).lower(): entry for name, entry in file_providers.items()}
    names = list(BUILTIN_PROVIDERS)
    names += [name for name in file_providers if name not in BUILTIN_PROVIDERS]

    providers = []
    for name in names:
        entry = file_providers.get(name) or {}
        if not isinstance(entry, dict):
            raise ConfigError(f"Provider '{name}' in the config file must be a mapping")
        providers.append(_build_provider(name, BUILTIN_PROVIDERS.get(name), entry, resolve))

    default = resolve.get(
        default_provider, "DEFAULT_PROVIDER", resolve.file("default_provider"), DEFAULT_PROVIDER
    )
    registry = ProviderRegistry(providers, default_provider=str(default))
    # Fail at startup rather than on the first request
    registry.resolve_provider()

    port_value = resolve.get(
        port,
        "PROXY_PORT",
        resolve.get(None, "PORT", resolve.file("port"), None),
        DEFAULT_PORT,
    )
    try:
        resolved_port = int(port_value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"port must be an integer, got {port_value!r}") from e

    return ProxySettings(
        host=str(resolve.get(host, "PROXY_HOST", resolve.file("host"), DEFAULT_HOST)),
        port=resolved_port,
        registry=registry,
        debug_dir=resolve.get(debug_dir, "CLAUDE_PROXY_DEBUG_DIR", resolve.file("debug_dir"), None),
    )


async def create_proxy(
    host: str | None = None,
    port: int | None = None,
    default_provider: str | None = None,
    config_file: str | None = None,
    debug_dir: str | None = None,
) -> None:
    """Create and run the proxy server.

    This is a convenience function that blocks until stopped.

    Args:
        host: Host to bind to (or PROXY_HOST env var).
        port: Port to bind to (or PROXY_PORT, then PORT env var).
        default_provider: Provider for requests that name none (or DEFAULT_PROVIDER).
        config_file: Path to YAML config (or CLAUDE_PROXY_CONFIG env var).
        debug_dir: Directory for request/response debug dumps.

    Example:
        >>> # export OPENAI_API_KEY=sk-...
        >>> # export DEFAULT_PROVIDER=openai
        >>> await create_proxy(port=8082)
    """
    from claude_proxy.gateway.server import ProxyServer, ProxyServerConfig

    settings = await asyncio.to_thread(
        build_settings,
        host=host,
        port=port,
        default_provider=default_provider,
        config_file=config_file,
        debug_dir=debug_dir,
    )

    server = ProxyServer(
        config=ProxyServerConfig(
            host=settings.host,
            port=settings.port,
            debug_dir=settings.debug_dir,
        ),
        registry=settings.registry,
    )
    await server.serve()
