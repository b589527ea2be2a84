"""Multi-provider proxy server.

Exposes a /v1/messages endpoint that accepts Anthropic Messages API format
and routes each request to one of the configured upstream providers:

1. Accepts Anthropic format requests (e.g. from Claude Code CLI)
2. Picks a provider (header, then metadata.provider, then the default)
3. Transforms to the provider's native format and forwards it
4. Transforms responses and streams back to Anthropic format
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web

from claude_proxy.gateway.errors import (
    InternalError,
    InvalidRequestError,
    NormalizedError,
    ProxyError,
)
from claude_proxy.gateway.registry import ProviderRegistry
from claude_proxy.gateway.router import Dispatcher, EventStream
from claude_proxy.gateway.tracing import RequestTracer
from claude_proxy.gateway.transforms.anthropic import AnthropicTransformer
from claude_proxy.gateway.transforms.validation import validate_request

logger = logging.getLogger(__name__)

PROVIDER_HEADER = "x-claude-proxy-provider"


@dataclass
class ProxyServerConfig:
    """Configuration for the proxy server."""

    host: str = "127.0.0.1"
    port: int = 8082

    # Request limits
    max_body_size: int = 500 * 1024 * 1024  # 500MB

    # Debug: save raw requests/responses to files
    debug_dir: str | None = None  # e.g., "/tmp/claude-proxy-debug"


@dataclass
class ProxyServer:
    """HTTP server that accepts Anthropic Messages API requests and routes
    them to the configured providers.

    Example:
        >>> registry = ProviderRegistry([...], default_provider="ollama")
        >>> server = ProxyServer(config=ProxyServerConfig(port=8082), registry=registry)
        >>> await server.serve()
    """

    config: ProxyServerConfig
    registry: ProviderRegistry
    _dispatcher: Dispatcher = field(init=False)
    _app: web.Application | None = None
    _runner: web.AppRunner | None = None
    _port: int | None = None
    _shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)
    _tracer: RequestTracer = field(init=False)
    _transformer: AnthropicTransformer = field(default_factory=AnthropicTransformer)

    def __post_init__(self) -> None:
        self._dispatcher = Dispatcher(self.registry)
        self._tracer = RequestTracer(debug_dir=self.config.debug_dir)

    @property
    def port(self) -> int | None:
        """Port actually bound (differs from config when config.port is 0)."""
        return self._port

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    def swap_registry(self, registry: ProviderRegistry) -> None:
        """Replace the provider registry; in-flight requests are unaffected."""
        self.registry = registry
        self._dispatcher.swap_registry(registry)

    def create_app(self) -> web.Application:
        app = web.Application(client_max_size=self.config.max_body_size)
        app.router.add_post("/v1/messages", self._handle_messages)
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/v1/providers", self._handle_providers)
        app.router.add_post("/api/shutdown", self._handle_shutdown)
        return app

    async def start(self) -> None:
        """Start listening without blocking."""
        await self._dispatcher.start()

        self._app = self.create_app()
        # A client disconnect cancels the handler, which closes the upstream
        self._runner = web.AppRunner(self._app, handler_cancellation=True)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.config.host, self.config.port)
        await site.start()
        self._port = self._runner.addresses[0][1]

        logger.info(
            "claude-proxy listening on %s:%s (providers: %s, default: %s)",
            self.config.host,
            self._port,
            ", ".join(self.registry.names()) or "none",
            self.registry.default_provider or "none",
        )

    async def serve(self) -> None:
        """Start the proxy server and run until shutdown is requested."""
        await self.start()
        try:
            await self._shutdown_event.wait()
            logger.info("claude-proxy shutdown requested")
        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def stop(self) -> None:
        """Stop the proxy server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        await self._dispatcher.close()

    async def _handle_messages(self, request: web.Request) -> web.StreamResponse:
        """Handle POST /v1/messages - main proxy endpoint."""
        started = time.monotonic()

        content_type = request.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            return self._error_response(
                InvalidRequestError(
                    f"Content-Type must be application/json, got: {content_type}"
                ).normalized
            )

        try:
            body = await request.json()
        except ValueError as e:
            return self._error_response(InvalidRequestError(f"Invalid JSON: {e}").normalized)

        header_provider = request.headers.get(PROVIDER_HEADER)
        trace_id = self._tracer.generate_trace_id(
            body, header_provider or _metadata_provider(body) or self.registry.default_provider
        )
        self._tracer.log_request(
            trace_id,
            request.method,
            request.path,
            request.content_length or 0,
            len(body.get("messages") or []) if isinstance(body, dict) else 0,
        )
        logger.debug(
            "[%s] anthropic-version: %s",
            trace_id,
            request.headers.get("anthropic-version", "unknown"),
        )

        validation_errors = validate_request(body)
        if validation_errors:
            error = InvalidRequestError("; ".join(validation_errors)).normalized
            self._tracer.log_response(
                trace_id, error.http_status, time.monotonic() - started, error=error.message
            )
            return self._error_response(error, trace_id)

        self._tracer.save_debug(trace_id, "1_anthropic_request.json", body)

        canonical = self._transformer.to_canonical(body, provider=header_provider)

        try:
            result = await self._dispatcher.dispatch(canonical, trace_id)
        except ProxyError as e:
            error = e.normalized
            self._tracer.log_response(
                trace_id, error.http_status, time.monotonic() - started, error=error.message
            )
            return self._error_response(error, trace_id)
        except Exception:
            logger.exception("[%s] Unexpected error", trace_id)
            error = InternalError("Internal error").normalized
            self._tracer.log_response(
                trace_id, error.http_status, time.monotonic() - started, error=error.message
            )
            return self._error_response(error, trace_id)

        if isinstance(result, EventStream):
            return await self._handle_streaming(request, result, trace_id, started)

        response_body = self._transformer.response_to_dict(result)
        self._tracer.save_debug(trace_id, "2_anthropic_response.json", response_body)
        self._tracer.log_response(
            trace_id,
            200,
            time.monotonic() - started,
            tokens_in=result.usage.input_tokens,
            tokens_out=result.usage.output_tokens,
        )
        return web.json_response(response_body, headers={"X-Trace-Id": trace_id})

    async def _handle_streaming(
        self,
        request: web.Request,
        stream: EventStream,
        trace_id: str,
        started: float,
    ) -> web.StreamResponse:
        """Write canonical stream events as SSE, one upstream read per write."""
        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Trace-Id": trace_id,
            },
        )

        debug_events: list[dict[str, Any]] | None = [] if self._tracer.debug_dir else None
        error_message: str | None = None

        try:
            await response.prepare(request)
            async for event in stream:
                if debug_events is not None:
                    debug_events.append(event.to_dict())
                if event.type == "error":
                    error_message = event.payload["error"]["message"]
                await response.write(self._transformer.event_to_sse(event))
            await response.write_eof()
        except ConnectionResetError:
            # Client disconnected
            logger.debug("[%s] Client disconnected during streaming", trace_id)
            error_message = "client disconnected"
        finally:
            await stream.aclose()
            if debug_events is not None:
                self._tracer.save_debug(trace_id, "2_stream_events.json", debug_events)

        usage = stream.transcoder.usage
        self._tracer.log_response(
            trace_id,
            200,
            time.monotonic() - started,
            tokens_in=usage.input_tokens,
            tokens_out=usage.output_tokens,
            error=error_message,
        )
        return response

    def _error_response(
        self,
        error: NormalizedError,
        trace_id: str | None = None,
    ) -> web.Response:
        """Return Anthropic-format error response."""
        headers: dict[str, str] = {}
        if trace_id:
            headers["X-Trace-Id"] = trace_id
        if error.retry_after is not None:
            headers["retry-after"] = f"{error.retry_after:g}"
        return web.json_response(error.to_dict(), status=error.http_status, headers=headers)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Handle GET /health."""
        return web.json_response({"status": "ok", "providers": self.registry.names()})

    async def _handle_providers(self, request: web.Request) -> web.Response:
        """Handle GET /v1/providers. Credentials are never included."""
        registry = self.registry
        return web.json_response(
            {
                "default": registry.default_provider,
                "providers": [
                    {
                        "name": provider.name,
                        "kind": provider.kind,
                        "base_url": provider.base_url,
                        "model": provider.model,
                        "model_mapping": dict(provider.model_mapping),
                        "has_api_key": bool(provider.api_key),
                    }
                    for provider in registry.providers.values()
                ],
            }
        )

    async def _handle_shutdown(self, request: web.Request) -> web.Response:
        """Handle POST /api/shutdown."""
        self._shutdown_event.set()
        return web.json_response({"success": True, "message": "Shutdown initiated"})


def _metadata_provider(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    metadata = body.get("metadata")
    if isinstance(metadata, dict) and isinstance(metadata.get("provider"), str):
        return metadata["provider"]
    return None
