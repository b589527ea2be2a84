"""Provider adapter interface.

An adapter knows one provider's wire format. It converts canonical requests
to native ones, native responses back to canonical ones, and hands out a
stateful stream decoder per request. Adding a provider means writing one
adapter and registering it in ``claude_proxy.gateway.adapters``; the router
never changes.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, ClassVar, Literal

from claude_proxy.gateway.errors import UnsupportedFeatureError, UpstreamProtocolError
from claude_proxy.gateway.registry import ProviderConfig
from claude_proxy.gateway.transforms.tool_id_mapper import ToolIDMapper
from claude_proxy.gateway.transforms.types import (
    CanonicalRequest,
    CanonicalResponse,
    ProviderRequest,
    StopReason,
    UpstreamDelta,
)

logger = logging.getLogger(__name__)


class StreamDecoder(ABC):
    """Decodes one provider stream, line by line.

    Decoders are request-scoped and may keep state between lines (e.g. which
    tool calls are open). They raise ``UpstreamProtocolError`` for malformed
    chunks and never emit canonical events themselves.
    """

    @abstractmethod
    def decode_stream_chunk(self, line: str) -> list[UpstreamDelta]:
        """Decode one raw line of upstream output."""

    @staticmethod
    def parse_json(data: str, provider: str) -> dict[str, Any]:
        try:
            value = json.loads(data)
        except ValueError as e:
            raise UpstreamProtocolError(
                f"Malformed {provider} stream chunk: {e}", provider=provider
            ) from e
        if not isinstance(value, dict):
            raise UpstreamProtocolError(
                f"Unexpected {provider} stream chunk type: {type(value).__name__}",
                provider=provider,
            )
        return value

    @staticmethod
    def sse_data(line: str) -> str | None:
        """Return the payload of an SSE ``data:`` line, or None for other lines."""
        if not line.startswith("data:"):
            return None
        return line[5:].strip()


class ProviderAdapter(ABC):
    """Capability interface every provider variant implements."""

    kind: ClassVar[str]
    supports_tools: ClassVar[bool] = True
    temperature_range: ClassVar[tuple[float, float]] = (0.0, 2.0)
    framing: ClassVar[Literal["sse", "ndjson"]] = "sse"
    tool_id_prefix: ClassVar[str] = "call_"

    # Provider finish reason -> canonical stop reason
    finish_reasons: ClassVar[Mapping[str, StopReason]] = {}

    def __init__(self, provider: ProviderConfig) -> None:
        self.provider = provider

    @property
    def name(self) -> str:
        return self.provider.name

    def headers(self) -> dict[str, str]:
        """Headers sent with every upstream request."""
        headers = {"Content-Type": "application/json"}
        if self.provider.api_key:
            headers["Authorization"] = f"Bearer {self.provider.api_key}"
        return headers

    def new_tool_id_mapper(self) -> ToolIDMapper:
        return ToolIDMapper(provider_prefix=self.tool_id_prefix)

    def check_capabilities(self, request: CanonicalRequest) -> None:
        """Fail fast if the request needs something this provider lacks.

        Raises:
            UnsupportedFeatureError: Tools used against a provider without tool support.
        """
        if request.uses_tools and not self.supports_tools:
            raise UnsupportedFeatureError(
                f"Provider '{self.name}' does not support tool use",
                provider=self.name,
            )

    def clamp_temperature(self, temperature: float | None) -> float | None:
        if temperature is None:
            return None
        low, high = self.temperature_range
        clamped = min(max(temperature, low), high)
        if clamped != temperature:
            logger.debug(
                "Clamped temperature %.2f to %.2f for provider %s", temperature, clamped, self.name
            )
        return clamped

    def map_stop_reason(self, raw: str | None) -> tuple[StopReason, str | None]:
        """Map a provider finish reason to a canonical stop reason.

        Returns:
            (stop_reason, warning). Unknown reasons map to ``end_turn`` with a
            warning instead of failing the response.
        """
        if raw is None:
            return "end_turn", None
        stop_reason = self.finish_reasons.get(raw)
        if stop_reason is None:
            logger.warning("Unmapped finish reason from %s: %s", self.name, raw)
            return "end_turn", f"unmapped finish reason: {raw}"
        return stop_reason, None

    @abstractmethod
    def to_provider_request(
        self,
        request: CanonicalRequest,
        model: str,
        tool_id_mapper: ToolIDMapper,
    ) -> ProviderRequest:
        """Convert a canonical request to the provider's native shape."""

    @abstractmethod
    def from_provider_response(
        self,
        response: dict[str, Any],
        model: str,
        tool_id_mapper: ToolIDMapper,
    ) -> CanonicalResponse:
        """Convert a provider non-streaming response to canonical form."""

    @abstractmethod
    def new_stream_decoder(self, tool_id_mapper: ToolIDMapper) -> StreamDecoder:
        """Create a decoder for one streaming response."""
