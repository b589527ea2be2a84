"""Upstream HTTP clients."""

from claude_proxy.gateway.clients.upstream import UpstreamClient, UpstreamStream

__all__ = ["UpstreamClient", "UpstreamStream"]
