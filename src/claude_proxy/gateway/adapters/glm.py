"""GLM / Z.AI Anthropic-compatible adapter.

The upstream speaks the Anthropic Messages API, so requests need little more
than the model swap and a temperature clamp to [0, 1]. The stream is still
decoded into upstream deltas so it passes through the same state machine as
every other provider.
"""

from __future__ import annotations

from typing import Any

from claude_proxy.gateway.adapters.base import ProviderAdapter, StreamDecoder
from claude_proxy.gateway.errors import UpstreamProtocolError
from claude_proxy.gateway.registry import ProviderConfig
from claude_proxy.gateway.streaming import generate_message_id
from claude_proxy.gateway.transforms.anthropic import AnthropicTransformer
from claude_proxy.gateway.transforms.tool_id_mapper import ToolIDMapper
from claude_proxy.gateway.transforms.types import (
    CanonicalRequest,
    CanonicalResponse,
    ProviderRequest,
    UpstreamDelta,
    Usage,
)

ANTHROPIC_VERSION = "2023-06-01"


def _usage(data: dict[str, Any] | None) -> Usage | None:
    if not data:
        return None
    return Usage(
        input_tokens=data.get("input_tokens") or 0,
        output_tokens=data.get("output_tokens") or 0,
    )


class GLMAdapter(ProviderAdapter):
    kind = "glm"
    temperature_range = (0.0, 1.0)
    finish_reasons = {
        "end_turn": "end_turn",
        "max_tokens": "max_tokens",
        "stop_sequence": "stop_sequence",
        "tool_use": "tool_use",
    }

    def __init__(self, provider: ProviderConfig) -> None:
        super().__init__(provider)
        self._transformer = AnthropicTransformer()

    def headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        if self.provider.api_key:
            headers["x-api-key"] = self.provider.api_key
            headers["Authorization"] = f"Bearer {self.provider.api_key}"
        return headers

    def to_provider_request(
        self,
        request: CanonicalRequest,
        model: str,
        tool_id_mapper: ToolIDMapper,
    ) -> ProviderRequest:
        body = self._transformer.from_canonical(request, model)
        temperature = self.clamp_temperature(request.temperature)
        if temperature is not None:
            body["temperature"] = temperature
        return ProviderRequest(path="/v1/messages", body=body, stream=request.stream)

    def from_provider_response(
        self,
        response: dict[str, Any],
        model: str,
        tool_id_mapper: ToolIDMapper,
    ) -> CanonicalResponse:
        if response.get("type") == "error":
            error = response.get("error") or {}
            raise UpstreamProtocolError(
                f"{self.name} returned error: {error.get('message', 'unknown error')}",
                provider=self.name,
            )
        if not isinstance(response.get("content"), list):
            raise UpstreamProtocolError(f"{self.name} response has no content", provider=self.name)

        stop_reason, warning = self.map_stop_reason(response.get("stop_reason"))
        return CanonicalResponse(
            id=response.get("id") or generate_message_id(),
            model=response.get("model") or model,
            content=self._transformer.parse_blocks(response["content"]),
            stop_reason=stop_reason,
            usage=_usage(response.get("usage")) or Usage(),
            stop_sequence=response.get("stop_sequence"),
            warnings=(warning,) if warning else (),
        )

    def new_stream_decoder(self, tool_id_mapper: ToolIDMapper) -> StreamDecoder:
        return GLMStreamDecoder(self)


class GLMStreamDecoder(StreamDecoder):
    """Parses Anthropic-format SSE events into upstream deltas.

    Block types other than text and tool_use (e.g. thinking) are skipped.
    """

    def __init__(self, adapter: GLMAdapter) -> None:
        self._adapter = adapter
        self._skipped: set[int] = set()

    def decode_stream_chunk(self, line: str) -> list[UpstreamDelta]:
        data_str = self.sse_data(line)
        if not data_str:
            return []

        data = self.parse_json(data_str, self._adapter.name)
        event_type = data.get("type")
        index = data.get("index", 0)
        slot = f"block:{index}"

        if event_type == "message_start":
            usage = _usage((data.get("message") or {}).get("usage"))
            return [UpstreamDelta(kind="usage", usage=usage)] if usage else []

        if event_type == "content_block_start":
            block = data.get("content_block") or {}
            if block.get("type") == "tool_use":
                return [
                    UpstreamDelta(
                        kind="tool_start",
                        slot=slot,
                        tool_id=block.get("id"),
                        tool_name=block.get("name"),
                    )
                ]
            if block.get("type") != "text":
                self._skipped.add(index)
            return []

        if event_type == "content_block_delta":
            if index in self._skipped:
                return []
            delta = data.get("delta") or {}
            if delta.get("type") == "text_delta":
                return [UpstreamDelta(kind="text", slot=slot, text=delta.get("text", ""))]
            if delta.get("type") == "input_json_delta":
                partial = delta.get("partial_json", "")
                return [UpstreamDelta(kind="tool_args", slot=slot, text=partial)]
            return []

        if event_type == "content_block_stop":
            if index in self._skipped:
                return []
            return [UpstreamDelta(kind="block_stop", slot=slot)]

        if event_type == "message_delta":
            delta = data.get("delta") or {}
            raw_reason = delta.get("stop_reason")
            if not raw_reason:
                usage = _usage(data.get("usage"))
                return [UpstreamDelta(kind="usage", usage=usage)] if usage else []
            stop_reason, _ = self._adapter.map_stop_reason(raw_reason)
            return [
                UpstreamDelta(
                    kind="finish",
                    stop_reason=stop_reason,
                    stop_sequence=delta.get("stop_sequence"),
                    raw_reason=raw_reason,
                    usage=_usage(data.get("usage")),
                )
            ]

        if event_type == "message_stop":
            return [UpstreamDelta(kind="done")]

        if event_type == "error":
            error = data.get("error") or {}
            raise UpstreamProtocolError(
                f"{self._adapter.name} stream error: {error.get('message', 'unknown error')}",
                provider=self._adapter.name,
            )

        # ping and unknown event types
        return []
