"""Request router: selects a provider and drives the translation pipeline.

For every canonical request the dispatcher:

1. resolves the provider and model (no I/O happens before this succeeds);
2. checks capabilities and builds the provider-native request;
3. calls the upstream with the provider's timeouts;
4. returns a CanonicalResponse, or an EventStream of canonical events.

Nothing is retried. A failure mid-stream becomes a terminal ``error`` event.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass

from claude_proxy.gateway.adapters import ProviderAdapter, StreamDecoder, get_adapter
from claude_proxy.gateway.clients.upstream import UpstreamClient, UpstreamStream
from claude_proxy.gateway.errors import InternalError, ProxyError, UpstreamProtocolError
from claude_proxy.gateway.registry import ProviderConfig, ProviderRegistry
from claude_proxy.gateway.streaming import StreamTranscoder
from claude_proxy.gateway.transforms.tool_id_mapper import ToolIDMapper
from claude_proxy.gateway.transforms.types import (
    CanonicalRequest,
    CanonicalResponse,
    ProviderRequest,
    StreamEvent,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutePlan:
    """Everything resolved for one request before any upstream I/O."""

    provider: ProviderConfig
    adapter: ProviderAdapter
    model: str
    tool_id_mapper: ToolIDMapper
    provider_request: ProviderRequest


class EventStream:
    """Canonical stream events for one upstream streaming response.

    Iterating drives the upstream read: each event is produced only after the
    previous one was consumed. ``aclose()`` aborts the upstream connection,
    whether or not iteration has started.
    """

    def __init__(
        self,
        plan: RoutePlan,
        upstream: UpstreamStream,
        trace_id: str,
    ) -> None:
        self.plan = plan
        self.transcoder = StreamTranscoder(model=plan.model)
        self._upstream = upstream
        self._decoder: StreamDecoder = plan.adapter.new_stream_decoder(plan.tool_id_mapper)
        self._trace_id = trace_id
        self._events = self._run()

    @property
    def provider(self) -> str:
        return self.plan.provider.name

    @property
    def model(self) -> str:
        return self.plan.model

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> StreamEvent:
        return await self._events.__anext__()

    async def aclose(self) -> None:
        try:
            await self._events.aclose()
        finally:
            self._upstream.close()

    async def _run(self) -> AsyncGenerator[StreamEvent, None]:
        machine = self.transcoder
        try:
            async for line in self._upstream.lines():
                for event in machine.start():
                    yield event
                for delta in self._decoder.decode_stream_chunk(line):
                    for event in machine.feed(delta):
                        yield event
            for event in machine.finish():
                yield event
            logger.info(
                "[%s] Stream complete: input_tokens=%d, output_tokens=%d",
                self._trace_id,
                machine.usage.input_tokens,
                machine.usage.output_tokens,
            )
        except ProxyError as e:
            logger.warning(
                "[%s] Stream from %s failed in state %s: %s",
                self._trace_id,
                self.provider,
                machine.state.name,
                e.message,
            )
            error = e.normalized.redact(self.plan.provider.api_key)
            for event in machine.fail(error):
                yield event
        except Exception:
            logger.exception("[%s] Unexpected error while decoding stream", self._trace_id)
            for event in machine.fail(InternalError("Internal error while streaming").normalized):
                yield event
        finally:
            self._upstream.close()


class Dispatcher:
    """Routes canonical requests to providers.

    Holds the current registry and one shared upstream client. Replacing the
    registry is a single reference assignment; requests already in flight
    keep the provider config they resolved.

    Example:
        >>> dispatcher = Dispatcher(registry)
        >>> await dispatcher.start()
        >>> response = await dispatcher.dispatch(request)
        >>> await dispatcher.close()
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        client: UpstreamClient | None = None,
    ) -> None:
        self._registry = registry
        self._client = client or UpstreamClient()

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def swap_registry(self, registry: ProviderRegistry) -> None:
        """Atomically replace the provider registry."""
        logger.info("Provider registry replaced: %s", ", ".join(registry.names()))
        self._registry = registry

    async def start(self) -> None:
        await self._client.connect()

    async def close(self) -> None:
        await self._client.close()

    def plan(self, request: CanonicalRequest) -> RoutePlan:
        """Resolve provider, model and native request without any I/O.

        Raises:
            ConfigError: Unknown provider or no default provider.
            UnsupportedFeatureError: The provider lacks a capability the
                request needs.
        """
        registry = self._registry
        provider = registry.resolve_provider(request.provider)
        model = registry.resolve_model(provider, request.model)
        adapter = get_adapter(provider)
        adapter.check_capabilities(request)

        mapper = adapter.new_tool_id_mapper()
        provider_request = adapter.to_provider_request(request, model, mapper)
        return RoutePlan(
            provider=provider,
            adapter=adapter,
            model=model,
            tool_id_mapper=mapper,
            provider_request=provider_request,
        )

    async def dispatch(
        self,
        request: CanonicalRequest,
        trace_id: str = "-",
    ) -> CanonicalResponse | EventStream:
        """Send a canonical request to its provider.

        Returns:
            CanonicalResponse for non-streaming requests. For streaming
            requests, an EventStream whose upstream status was already
            checked; callers must iterate or ``aclose()`` it.

        Raises:
            ProxyError: Any failure before the first stream event.
        """
        plan = self.plan(request)
        provider_request = plan.provider_request

        logger.info(
            "[%s] Routing to %s (%s): model=%s -> %s, stream=%s",
            trace_id,
            plan.provider.name,
            plan.adapter.kind,
            request.model,
            plan.model,
            request.stream,
        )
        if provider_request.dropped_params:
            logger.debug(
                "[%s] Dropped parameters unsupported by %s: %s",
                trace_id,
                plan.provider.name,
                ", ".join(provider_request.dropped_params),
            )

        if request.stream:
            upstream = await self._client.open_stream(plan.adapter, provider_request, trace_id)
            return EventStream(plan, upstream, trace_id)

        data = await self._client.send(plan.adapter, provider_request, trace_id)
        try:
            response = plan.adapter.from_provider_response(data, plan.model, plan.tool_id_mapper)
        except UpstreamProtocolError:
            logger.error(
                "[%s] Unexpected %s response body: %s",
                trace_id,
                plan.provider.name,
                json.dumps(data, default=str)[:500],
            )
            raise
        for warning in response.warnings:
            logger.warning("[%s] %s: %s", trace_id, plan.provider.name, warning)
        logger.info(
            "[%s] Response complete: stop_reason=%s, input_tokens=%d, output_tokens=%d",
            trace_id,
            response.stop_reason,
            response.usage.input_tokens,
            response.usage.output_tokens,
        )
        return response
