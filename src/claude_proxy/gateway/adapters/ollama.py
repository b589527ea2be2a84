"""Ollama native chat adapter.

Ollama API Reference:
- Request: POST /api/chat with {model, messages, stream, options}
- Messages: [{role, content}] with plain string content
- Response: {model, message: {role, content}, done, done_reason,
  prompt_eval_count, eval_count}
- Streaming: newline-delimited JSON objects, the last one has done=true

Tool use is not supported through this adapter; content blocks are
flattened to plain strings.
"""

from __future__ import annotations

from typing import Any

from claude_proxy.gateway.adapters.base import ProviderAdapter, StreamDecoder
from claude_proxy.gateway.errors import UpstreamProtocolError
from claude_proxy.gateway.streaming import generate_message_id
from claude_proxy.gateway.transforms.tool_id_mapper import ToolIDMapper
from claude_proxy.gateway.transforms.types import (
    CanonicalRequest,
    CanonicalResponse,
    ContentBlock,
    ProviderRequest,
    UpstreamDelta,
    Usage,
)


def _usage(data: dict[str, Any]) -> Usage:
    return Usage(
        input_tokens=data.get("prompt_eval_count") or 0,
        output_tokens=data.get("eval_count") or 0,
    )


class OllamaAdapter(ProviderAdapter):
    kind = "ollama"
    supports_tools = False
    framing = "ndjson"
    finish_reasons = {
        "stop": "end_turn",
        "length": "max_tokens",
        "load": "end_turn",
        "unload": "end_turn",
    }

    def to_provider_request(
        self,
        request: CanonicalRequest,
        model: str,
        tool_id_mapper: ToolIDMapper,
    ) -> ProviderRequest:
        self.check_capabilities(request)

        messages: list[dict[str, str]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        for msg in request.messages:
            messages.append(
                {
                    "role": msg.role,
                    "content": "\n".join(b.text for b in msg.content if b.type == "text"),
                }
            )

        options: dict[str, Any] = {"num_predict": request.max_tokens}
        temperature = self.clamp_temperature(request.temperature)
        if temperature is not None:
            options["temperature"] = temperature
        if request.top_p is not None:
            options["top_p"] = request.top_p
        if request.top_k is not None:
            options["top_k"] = request.top_k
        if request.stop_sequences:
            options["stop"] = list(request.stop_sequences)

        return ProviderRequest(
            path="/api/chat",
            body={
                "model": model,
                "messages": messages,
                "stream": request.stream,
                "options": options,
            },
            stream=request.stream,
        )

    def from_provider_response(
        self,
        response: dict[str, Any],
        model: str,
        tool_id_mapper: ToolIDMapper,
    ) -> CanonicalResponse:
        message = response.get("message")
        if not isinstance(message, dict):
            raise UpstreamProtocolError(f"{self.name} response has no message", provider=self.name)

        text = message.get("content") or ""
        stop_reason, warning = self.map_stop_reason(response.get("done_reason") or "stop")

        return CanonicalResponse(
            id=generate_message_id(),
            model=response.get("model") or model,
            content=(ContentBlock.text_block(text),) if text else (),
            stop_reason=stop_reason,
            usage=_usage(response),
            warnings=(warning,) if warning else (),
        )

    def new_stream_decoder(self, tool_id_mapper: ToolIDMapper) -> StreamDecoder:
        return OllamaStreamDecoder(self)


class OllamaStreamDecoder(StreamDecoder):
    """Parses Ollama NDJSON lines into upstream deltas."""

    def __init__(self, adapter: OllamaAdapter) -> None:
        self._adapter = adapter

    def decode_stream_chunk(self, line: str) -> list[UpstreamDelta]:
        line = line.strip()
        if not line:
            return []

        data = self.parse_json(line, self._adapter.name)

        if data.get("error"):
            raise UpstreamProtocolError(
                f"{self._adapter.name} stream error: {data['error']}",
                provider=self._adapter.name,
            )

        deltas: list[UpstreamDelta] = []
        content = (data.get("message") or {}).get("content")
        if content:
            deltas.append(UpstreamDelta(kind="text", slot="text", text=content))

        if data.get("done"):
            raw_reason = data.get("done_reason") or "stop"
            stop_reason, _ = self._adapter.map_stop_reason(raw_reason)
            deltas.append(
                UpstreamDelta(
                    kind="finish",
                    stop_reason=stop_reason,
                    raw_reason=raw_reason,
                    usage=_usage(data),
                )
            )
        return deltas
