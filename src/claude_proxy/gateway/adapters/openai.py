"""OpenAI Chat Completions adapter.

OpenAI API Reference:
- Request: POST /chat/completions with {model, messages, tools, stream, max_tokens, temperature}
- Messages: [{role, content, tool_calls?, tool_call_id?}]
- Streaming: SSE with data: {"choices": [{"delta": {...}}]} terminated by data: [DONE]

Also serves any OpenAI-compatible backend (the ``zai`` provider uses it).
"""

from __future__ import annotations

import json
from typing import Any

from claude_proxy.gateway.adapters.base import ProviderAdapter, StreamDecoder
from claude_proxy.gateway.errors import UpstreamProtocolError
from claude_proxy.gateway.streaming import generate_message_id
from claude_proxy.gateway.transforms.tool_id_mapper import ToolIDMapper
from claude_proxy.gateway.transforms.types import (
    CanonicalRequest,
    CanonicalResponse,
    ContentBlock,
    Message,
    ProviderRequest,
    UpstreamDelta,
    Usage,
)


def _usage(data: dict[str, Any] | None) -> Usage | None:
    if not data:
        return None
    return Usage(
        input_tokens=data.get("prompt_tokens") or 0,
        output_tokens=data.get("completion_tokens") or 0,
    )


class OpenAIAdapter(ProviderAdapter):
    """Transforms canonical format to/from OpenAI API format."""

    kind = "openai"
    finish_reasons = {
        "stop": "end_turn",
        "length": "max_tokens",
        "tool_calls": "tool_use",
        "function_call": "tool_use",
        "content_filter": "end_turn",
    }

    # Sampling parameters this backend ignores
    unsupported_params: tuple[str, ...] = ("top_k",)

    def to_provider_request(
        self,
        request: CanonicalRequest,
        model: str,
        tool_id_mapper: ToolIDMapper,
    ) -> ProviderRequest:
        """Convert canonical request to OpenAI Chat Completions format.

        Args:
            request: Canonical request
            model: Provider model id (already resolved)
            tool_id_mapper: Request-scoped mapper for tool call IDs

        Returns:
            ProviderRequest for /chat/completions
        """
        messages: list[dict[str, Any]] = []

        if request.system:
            messages.append({"role": "system", "content": request.system})

        for msg in request.messages:
            messages.extend(self._convert_message(msg, tool_id_mapper))

        body: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": request.max_tokens,
            "stream": request.stream,
        }
        temperature = self.clamp_temperature(request.temperature)
        if temperature is not None:
            body["temperature"] = temperature
        if request.top_p is not None:
            body["top_p"] = request.top_p
        if request.stop_sequences:
            body["stop"] = list(request.stop_sequences)

        dropped: list[str] = []
        if request.top_k is not None:
            if "top_k" in self.unsupported_params:
                dropped.append("top_k")
            else:
                body["top_k"] = request.top_k

        if request.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.input_schema or {"type": "object", "properties": {}},
                    },
                }
                for tool in request.tools
            ]

        # Request stream_options for usage in streaming mode
        if request.stream:
            body["stream_options"] = {"include_usage": True}

        return ProviderRequest(
            path="/chat/completions",
            body=body,
            stream=request.stream,
            dropped_params=tuple(dropped),
        )

    def _convert_message(self, msg: Message, tool_id_mapper: ToolIDMapper) -> list[dict[str, Any]]:
        if msg.role == "system":
            return [{"role": "system", "content": msg.text}]

        if msg.role == "assistant":
            tool_uses = msg.tool_uses
            if not tool_uses:
                return [{"role": "assistant", "content": msg.text}]
            return [
                {
                    "role": "assistant",
                    "content": msg.text or None,
                    "tool_calls": [
                        {
                            "id": tool_id_mapper.to_provider_id(block.id or ""),
                            "type": "function",
                            "function": {
                                "name": block.name,
                                "arguments": json.dumps(block.input),
                            },
                        }
                        for block in tool_uses
                    ],
                }
            ]

        # user: tool results must directly follow the assistant tool_calls turn
        converted: list[dict[str, Any]] = [
            {
                "role": "tool",
                "tool_call_id": tool_id_mapper.to_provider_id(block.tool_use_id or ""),
                "content": block.text,
            }
            for block in msg.tool_results
        ]
        text = msg.text
        if text or not converted:
            converted.append({"role": "user", "content": text})
        return converted

    def from_provider_response(
        self,
        response: dict[str, Any],
        model: str,
        tool_id_mapper: ToolIDMapper,
    ) -> CanonicalResponse:
        """Convert OpenAI non-streaming response to canonical format."""
        choices = response.get("choices")
        if not isinstance(choices, list) or not choices:
            raise UpstreamProtocolError(
                f"{self.name} response has no choices", provider=self.name
            )

        choice = choices[0] or {}
        message = choice.get("message") or {}

        content: list[ContentBlock] = []
        text = message.get("content") or ""
        if text:
            content.append(ContentBlock.text_block(text))

        for tc in message.get("tool_calls") or []:
            function = tc.get("function") or {}
            try:
                arguments = json.loads(function.get("arguments") or "{}")
            except json.JSONDecodeError:
                arguments = {}
            content.append(
                ContentBlock.tool_use(
                    id=tool_id_mapper.to_canonical_id(tc.get("id") or function.get("name", "")),
                    name=function.get("name", ""),
                    input=arguments if isinstance(arguments, dict) else {},
                )
            )

        stop_reason, warning = self.map_stop_reason(choice.get("finish_reason"))

        return CanonicalResponse(
            id=generate_message_id(),
            model=response.get("model") or model,
            content=tuple(content),
            stop_reason=stop_reason,
            usage=_usage(response.get("usage")) or Usage(),
            warnings=(warning,) if warning else (),
        )

    def new_stream_decoder(self, tool_id_mapper: ToolIDMapper) -> StreamDecoder:
        return OpenAIStreamDecoder(self, tool_id_mapper)


class OpenAIStreamDecoder(StreamDecoder):
    """Parses OpenAI SSE lines into upstream deltas."""

    def __init__(self, adapter: OpenAIAdapter, tool_id_mapper: ToolIDMapper) -> None:
        self._adapter = adapter
        self._mapper = tool_id_mapper
        self._tool_slots: dict[int, str] = {}
        self._text_open = False

    def decode_stream_chunk(self, line: str) -> list[UpstreamDelta]:
        data_str = self.sse_data(line)
        if data_str is None or not data_str:
            return []

        if data_str == "[DONE]":
            return [UpstreamDelta(kind="done")]

        data = self.parse_json(data_str, self._adapter.name)

        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise UpstreamProtocolError(
                f"{self._adapter.name} stream error: {message}", provider=self._adapter.name
            )

        deltas: list[UpstreamDelta] = []

        # OpenAI sends usage in a separate chunk at the end (choices empty)
        usage = _usage(data.get("usage"))
        if usage:
            deltas.append(UpstreamDelta(kind="usage", usage=usage))

        choices = data.get("choices") or []
        if not choices:
            return deltas

        choice = choices[0] or {}
        delta = choice.get("delta") or {}

        if delta.get("content"):
            self._text_open = True
            deltas.append(UpstreamDelta(kind="text", slot="text", text=delta["content"]))

        for tc in delta.get("tool_calls") or []:
            tc_index = tc.get("index", 0)
            function = tc.get("function") or {}

            if tc.get("id"):
                # Start of a new tool call; the text block ends here
                if self._text_open:
                    deltas.append(UpstreamDelta(kind="block_stop", slot="text"))
                    self._text_open = False
                slot = f"tool:{tc_index}"
                self._tool_slots[tc_index] = slot
                deltas.append(
                    UpstreamDelta(
                        kind="tool_start",
                        slot=slot,
                        tool_id=self._mapper.to_canonical_id(tc["id"]),
                        tool_name=function.get("name", ""),
                    )
                )

            slot = self._tool_slots.get(tc_index)
            if slot and function.get("arguments"):
                deltas.append(
                    UpstreamDelta(kind="tool_args", slot=slot, text=function["arguments"])
                )

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            stop_reason, _ = self._adapter.map_stop_reason(finish_reason)
            deltas.append(
                UpstreamDelta(
                    kind="finish",
                    stop_reason=stop_reason,
                    raw_reason=finish_reason,
                    usage=usage,
                )
            )

        return deltas
