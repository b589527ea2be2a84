"""Provider adapters, one per upstream wire format.

``ADAPTERS`` maps a provider kind to its adapter class. Register new
providers here; the router looks adapters up by ``ProviderConfig.kind``.
"""

from claude_proxy.gateway.errors import ConfigError
from claude_proxy.gateway.registry import ProviderConfig

from .base import ProviderAdapter, StreamDecoder
from .gemini import GeminiAdapter
from .glm import GLMAdapter
from .ollama import OllamaAdapter
from .openai import OpenAIAdapter
from .vllm import VLLMAdapter

ADAPTERS: dict[str, type[ProviderAdapter]] = {
    "openai": OpenAIAdapter,
    "ollama": OllamaAdapter,
    "vllm": VLLMAdapter,
    "gemini": GeminiAdapter,
    "glm": GLMAdapter,
}


def get_adapter(provider: ProviderConfig) -> ProviderAdapter:
    """Instantiate the adapter for a provider.

    Raises:
        ConfigError: If the provider kind has no adapter.
    """
    adapter_cls = ADAPTERS.get(provider.kind)
    if adapter_cls is None:
        raise ConfigError(
            f"Provider '{provider.name}' has unsupported kind '{provider.kind}' "
            f"(supported: {', '.join(sorted(ADAPTERS))})",
            provider=provider.name,
        )
    return adapter_cls(provider)


__all__ = [
    "ADAPTERS",
    "GLMAdapter",
    "GeminiAdapter",
    "OllamaAdapter",
    "OpenAIAdapter",
    "ProviderAdapter",
    "StreamDecoder",
    "VLLMAdapter",
    "get_adapter",
]
