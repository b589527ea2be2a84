"""claude-proxy gateway - Anthropic Messages API in front of many providers.

Components:
- Registry: provider connection settings and model mapping
- Adapters: per-provider request, response and stream translation
- Router: provider selection and the upstream call pipeline
- Server: the aiohttp HTTP front end

Usage (via compose.py convenience functions):
    from claude_proxy.compose import create_proxy
    import asyncio

    asyncio.run(create_proxy(default_provider="ollama"))

Usage (direct):
    from claude_proxy.gateway import ProviderConfig, ProviderRegistry
    from claude_proxy.gateway.server import ProxyServer, ProxyServerConfig
    import asyncio

    async def main():
        registry = ProviderRegistry(
            [ProviderConfig(name="ollama", base_url="http://localhost:11434", model="llama2")],
            default_provider="ollama",
        )
        server = ProxyServer(config=ProxyServerConfig(port=8082), registry=registry)
        await server.serve()

    asyncio.run(main())
"""

from claude_proxy.gateway.errors import ERROR_TYPE_MAP, ErrorKind, NormalizedError, ProxyError
from claude_proxy.gateway.registry import ProviderConfig, ProviderRegistry, parse_model_mapping
from claude_proxy.gateway.tracing import RequestTracer

__all__ = [
    "ERROR_TYPE_MAP",
    "ErrorKind",
    "NormalizedError",
    "ProviderConfig",
    "ProviderRegistry",
    "ProxyError",
    "RequestTracer",
    "parse_model_mapping",
]
