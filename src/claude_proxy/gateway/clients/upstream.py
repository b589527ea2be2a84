"""HTTP client for upstream provider calls.

Uses one shared aiohttp.ClientSession; per-provider headers and timeouts are
applied per request, so the session holds no provider state.

Features:
- Connect, first-byte and idle-between-chunks timeouts
- Streaming responses exposed as an async line iterator
- Non-200 responses normalized into the error taxonomy

No retries: retrying is left to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import aiohttp

from claude_proxy.gateway.adapters.base import ProviderAdapter
from claude_proxy.gateway.errors import (
    StreamInterruptedError,
    UpstreamConnectionError,
    UpstreamProtocolError,
    error_from_normalized,
    normalize,
)
from claude_proxy.gateway.transforms.types import ProviderRequest

logger = logging.getLogger(__name__)


def _url(adapter: ProviderAdapter, request: ProviderRequest) -> str:
    return f"{adapter.provider.base_url}{request.path}"


async def _post(
    session: aiohttp.ClientSession,
    url: str,
    adapter: ProviderAdapter,
    request: ProviderRequest,
    timeout: aiohttp.ClientTimeout,
) -> aiohttp.ClientResponse:
    return await session.post(url, json=request.body, headers=adapter.headers(), timeout=timeout)


async def _raise_for_status(
    adapter: ProviderAdapter,
    response: aiohttp.ClientResponse,
    trace_id: str,
) -> None:
    """Normalize a non-200 upstream response and raise it."""
    if response.status == 200:
        return
    error_body = await response.text()
    logger.error(
        "[%s] Upstream %s error %d: %s",
        trace_id,
        adapter.name,
        response.status,
        error_body[:500],
    )
    error = normalize(
        adapter.name,
        response.status,
        error_body,
        dict(response.headers),
        kind=adapter.kind,
    )
    raise error_from_normalized(error.redact(adapter.provider.api_key))


class UpstreamStream:
    """An open streaming response from a provider.

    Iterate ``lines()`` to read the body; call ``close()`` to abort the
    upstream connection. Closing is idempotent.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        response: aiohttp.ClientResponse,
        trace_id: str,
    ) -> None:
        self._adapter = adapter
        self._response = response
        self._trace_id = trace_id

    @property
    def closed(self) -> bool:
        return self._response.closed

    async def lines(self) -> AsyncIterator[str]:
        """Yield decoded, non-empty lines from the upstream body.

        Raises:
            UpstreamConnectionError: On idle timeout, or transport failure
                before the first line.
            StreamInterruptedError: Transport failure after data arrived.
        """
        idle_timeout = self._adapter.provider.idle_timeout
        line_count = 0
        while True:
            try:
                raw = await asyncio.wait_for(self._response.content.readline(), idle_timeout)
            except asyncio.TimeoutError as e:
                raise UpstreamConnectionError(
                    f"No data from {self._adapter.name} for {idle_timeout:.1f}s",
                    http_status=504,
                    provider=self._adapter.name,
                ) from e
            except aiohttp.ClientError as e:
                message = f"Connection to {self._adapter.name} lost: {type(e).__name__}"
                if line_count:
                    raise StreamInterruptedError(message, provider=self._adapter.name) from e
                raise UpstreamConnectionError(message, provider=self._adapter.name) from e

            if not raw:
                logger.debug("[%s] Upstream EOF after %d lines", self._trace_id, line_count)
                return

            line = raw.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            line_count += 1
            logger.debug("[%s] Upstream line %d: %s", self._trace_id, line_count, line[:200])
            yield line

    def close(self) -> None:
        """Abort the upstream connection."""
        if not self._response.closed:
            logger.debug("[%s] Closing upstream %s connection", self._trace_id, self._adapter.name)
            self._response.close()


@dataclass
class UpstreamClient:
    """HTTP client for upstream LLM APIs.

    Provides both streaming and non-streaming methods.
    """

    _session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        """Initialize the shared HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None),
            )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._session:
            await self._session.close()
            self._session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("Client not connected. Call connect() first.")
        return self._session

    async def send(
        self,
        adapter: ProviderAdapter,
        request: ProviderRequest,
        trace_id: str,
    ) -> dict[str, Any]:
        """Non-streaming request.

        Returns:
            Parsed JSON response body.

        Raises:
            ProxyError: Normalized upstream failure.
        """
        session = self._require_session()
        provider = adapter.provider
        timeout = aiohttp.ClientTimeout(
            total=provider.request_timeout,
            sock_connect=provider.connect_timeout,
        )
        url = _url(adapter, request)

        try:
            async with session.post(
                url,
                json=request.body,
                headers=adapter.headers(),
                timeout=timeout,
            ) as response:
                await _raise_for_status(adapter, response, trace_id)
                body_text = await response.text()
        except asyncio.TimeoutError as e:
            raise UpstreamConnectionError(
                f"Request to {adapter.name} timed out",
                http_status=504,
                provider=adapter.name,
            ) from e
        except aiohttp.ClientError as e:
            logger.warning("[%s] Upstream %s request failed: %s", trace_id, adapter.name, e)
            raise UpstreamConnectionError(
                f"Could not reach {adapter.name}: {type(e).__name__}",
                provider=adapter.name,
            ) from e

        try:
            data = json.loads(body_text)
        except ValueError as e:
            logger.error(
                "[%s] Unparseable %s response: %s", trace_id, adapter.name, body_text[:500]
            )
            raise UpstreamProtocolError(
                f"{adapter.name} returned a non-JSON response", provider=adapter.name
            ) from e
        if not isinstance(data, dict):
            raise UpstreamProtocolError(
                f"{adapter.name} returned an unexpected response shape", provider=adapter.name
            )
        return data

    async def open_stream(
        self,
        adapter: ProviderAdapter,
        request: ProviderRequest,
        trace_id: str,
    ) -> UpstreamStream:
        """Open a streaming request and wait for the response headers.

        The first-byte timeout covers sending the request and receiving the
        status line and headers.

        Raises:
            ProxyError: Normalized upstream failure (before any data is read).
        """
        session = self._require_session()
        provider = adapter.provider
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=provider.connect_timeout)
        url = _url(adapter, request)

        try:
            response = await asyncio.wait_for(
                _post(session, url, adapter, request, timeout),
                provider.first_byte_timeout,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamConnectionError(
                f"No response from {adapter.name} within {provider.first_byte_timeout:.1f}s",
                http_status=504,
                provider=adapter.name,
            ) from e
        except aiohttp.ClientError as e:
            logger.warning("[%s] Upstream %s stream failed: %s", trace_id, adapter.name, e)
            raise UpstreamConnectionError(
                f"Could not reach {adapter.name}: {type(e).__name__}",
                provider=adapter.name,
            ) from e

        try:
            await _raise_for_status(adapter, response, trace_id)
        except BaseException:
            response.release()
            raise

        logger.debug("[%s] Receiving %s stream from %s", trace_id, adapter.framing, adapter.name)
        return UpstreamStream(adapter, response, trace_id)
