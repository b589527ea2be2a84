"""Provider registry and model mapping.

The registry is built once at startup and never mutated. Replacing it (e.g.
on a config reload) means building a new ``ProviderRegistry`` and swapping
the reference held by the dispatcher.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from claude_proxy.gateway.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    """Connection settings for one upstream provider."""

    name: str
    base_url: str
    model: str
    api_key: str | None = None
    kind: str = ""  # adapter variant; defaults to name
    model_mapping: Mapping[str, str] = field(default_factory=dict)

    # Timeouts (seconds)
    connect_timeout: float = 10.0
    first_byte_timeout: float = 60.0
    idle_timeout: float = 60.0
    request_timeout: float = 300.0

    def __post_init__(self) -> None:
        if not self.kind:
            object.__setattr__(self, "kind", self.name)
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        object.__setattr__(self, "model_mapping", MappingProxyType(dict(self.model_mapping)))


def parse_model_mapping(text: str | None) -> dict[str, str]:
    """Parse a ``claudeModel:providerModel`` list separated by commas.

    Each entry splits on its first colon, so provider ids may contain colons
    (``claude-3-sonnet:llama2:13b`` maps to ``llama2:13b``). Whitespace is
    trimmed. Malformed entries are skipped. When a key repeats, the last
    occurrence wins.

    Args:
        text: Raw mapping string, e.g. ``"claude-3-haiku:llama2,claude-3-opus:llama3"``.

    Returns:
        Dict of canonical model id to provider model id.
    """
    mapping: dict[str, str] = {}
    if not text:
        return mapping

    for entry in text.split(","):
        entry = entry.strip()
        if not entry:
            continue
        claude_model, sep, provider_model = entry.partition(":")
        claude_model = claude_model.strip()
        provider_model = provider_model.strip()
        if not sep or not claude_model or not provider_model:
            logger.warning("Ignoring malformed model mapping entry: %r", entry)
            continue
        if claude_model in mapping:
            logger.debug(
                "Model mapping for %s overridden: %s -> %s",
                claude_model,
                mapping[claude_model],
                provider_model,
            )
        mapping[claude_model] = provider_model
    return mapping


def resolve_model(provider: ProviderConfig, canonical_model: str | None) -> str:
    """Resolve a canonical model id to the provider's model id.

    Returns the mapped id when ``canonical_model`` has an entry, otherwise the
    provider's default model.
    """
    if canonical_model and canonical_model in provider.model_mapping:
        return provider.model_mapping[canonical_model]
    return provider.model


class ProviderRegistry:
    """Read-only table of provider configurations.

    Example:
        >>> registry = ProviderRegistry(
        ...     [ProviderConfig(name="ollama", base_url="http://localhost:11434", model="llama2")],
        ...     default_provider="ollama",
        ... )
        >>> registry.resolve_provider().name
        'ollama'
    """

    __slots__ = ("_providers", "_default")

    def __init__(
        self,
        providers: list[ProviderConfig] | tuple[ProviderConfig, ...],
        default_provider: str | None = None,
    ) -> None:
        table: dict[str, ProviderConfig] = {}
        for provider in providers:
            table[provider.name.lower()] = provider
        self._providers: Mapping[str, ProviderConfig] = MappingProxyType(table)
        self._default = default_provider.lower() if default_provider else None

    @property
    def providers(self) -> Mapping[str, ProviderConfig]:
        return self._providers

    @property
    def default_provider(self) -> str | None:
        return self._default

    def names(self) -> list[str]:
        return sorted(self._providers)

    def resolve_provider(self, name: str | None = None) -> ProviderConfig:
        """Return the named provider, or the default one when no name is given.

        Raises:
            ConfigError: If the provider is unknown or no default is configured.
        """
        key = name.strip().lower() if name else None
        if not key:
            if not self._default:
                raise ConfigError("No provider specified and no default provider configured")
            key = self._default

        provider = self._providers.get(key)
        if provider is None:
            known = ", ".join(self.names()) or "none"
            raise ConfigError(f"Unknown provider '{key}' (configured: {known})")
        return provider

    def resolve_model(self, provider: ProviderConfig, canonical_model: str | None) -> str:
        return resolve_model(provider, canonical_model)
