"""claude-proxy - Anthropic Messages API gateway for many LLM providers.

Clients speak the Anthropic Messages API; the gateway translates each
request to one of several backends (OpenAI-compatible, Ollama, vLLM,
Google Gemini, GLM/Z.AI) and translates responses and streams back.

Layers:
    gateway/    Registry, adapters, router, streaming and the HTTP server
    core/       Process-level utilities (logging)
    frontends/  Command line interface

Quick Start:
    >>> from claude_proxy.compose import create_proxy
    >>> await create_proxy(port=8082, default_provider="ollama")
"""

__version__ = "0.1.0"
