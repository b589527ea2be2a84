"""Google Gemini adapter.

Gemini API Reference:
- Request: POST /models/{model}:generateContent with
  {contents, systemInstruction, generationConfig, tools}
- Contents: [{role: "user" | "model", parts: [{text} | {functionCall} | {functionResponse}]}]
- Streaming: POST /models/{model}:streamGenerateContent?alt=sse, each SSE
  data line is a full GenerateContentResponse chunk
- Response: {candidates: [{content: {parts}, finishReason}], usageMetadata}

Gemini function calls carry no stable ids, so canonical ``toolu_`` ids are
minted per call and tool results are matched back by function name.
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
    ProviderRequest,
    StopReason,
    UpstreamDelta,
    Usage,
)

# JSON Schema keywords the Gemini function declaration schema rejects
_UNSUPPORTED_SCHEMA_KEYS = frozenset(
    {"$schema", "$id", "additionalProperties", "default", "examples", "title"}
)


def clean_schema(schema: Any) -> Any:
    """Strip JSON Schema keywords Gemini does not accept, recursively."""
    if isinstance(schema, dict):
        return {
            key: clean_schema(value)
            for key, value in schema.items()
            if key not in _UNSUPPORTED_SCHEMA_KEYS
        }
    if isinstance(schema, list):
        return [clean_schema(item) for item in schema]
    return schema


def _usage(data: dict[str, Any] | None) -> Usage | None:
    if not data:
        return None
    return Usage(
        input_tokens=data.get("promptTokenCount") or 0,
        output_tokens=data.get("candidatesTokenCount") or 0,
    )


class GeminiAdapter(ProviderAdapter):
    kind = "gemini"
    tool_id_prefix = "gemini_"
    finish_reasons = {
        "STOP": "end_turn",
        "MAX_TOKENS": "max_tokens",
        "FINISH_REASON_UNSPECIFIED": "end_turn",
        "OTHER": "end_turn",
        "SAFETY": "error",
        "RECITATION": "error",
        "BLOCKLIST": "error",
        "PROHIBITED_CONTENT": "error",
        "SPII": "error",
        "MALFORMED_FUNCTION_CALL": "error",
    }

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.provider.api_key:
            headers["x-goog-api-key"] = self.provider.api_key
        return headers

    def to_provider_request(
        self,
        request: CanonicalRequest,
        model: str,
        tool_id_mapper: ToolIDMapper,
    ) -> ProviderRequest:
        system_parts: list[dict[str, str]] = []
        if request.system:
            system_parts.append({"text": request.system})

        # tool_result blocks reference ids; Gemini wants the function name
        tool_names = {
            block.id: block.name
            for msg in request.messages
            for block in msg.tool_uses
            if block.id and block.name
        }

        contents: list[dict[str, Any]] = []
        for msg in request.messages:
            if msg.role == "system":
                if msg.text:
                    system_parts.append({"text": msg.text})
                continue

            parts: list[dict[str, Any]] = []
            for block in msg.content:
                if block.type == "text":
                    if block.text:
                        parts.append({"text": block.text})
                elif block.type == "tool_use":
                    parts.append({"functionCall": {"name": block.name, "args": block.input}})
                elif block.type == "tool_result":
                    name = tool_names.get(block.tool_use_id or "", block.tool_use_id or "")
                    key = "error" if block.is_error else "content"
                    response = {"name": name, "response": {key: block.text}}
                    parts.append({"functionResponse": response})
            contents.append(
                {
                    "role": "model" if msg.role == "assistant" else "user",
                    "parts": parts or [{"text": ""}],
                }
            )

        generation_config: dict[str, Any] = {"maxOutputTokens": request.max_tokens}
        temperature = self.clamp_temperature(request.temperature)
        if temperature is not None:
            generation_config["temperature"] = temperature
        if request.top_p is not None:
            generation_config["topP"] = request.top_p
        if request.top_k is not None:
            generation_config["topK"] = request.top_k
        if request.stop_sequences:
            generation_config["stopSequences"] = list(request.stop_sequences)

        body: dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
        if system_parts:
            body["systemInstruction"] = {"parts": system_parts}
        if request.tools:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": tool.name,
                            "description": tool.description,
                            "parameters": clean_schema(tool.input_schema),
                        }
                        for tool in request.tools
                    ]
                }
            ]

        if request.stream:
            path = f"/models/{model}:streamGenerateContent?alt=sse"
        else:
            path = f"/models/{model}:generateContent"
        return ProviderRequest(path=path, body=body, stream=request.stream)

    def finish_to_stop_reason(
        self, raw: str | None, saw_function_call: bool
    ) -> tuple[StopReason, str | None]:
        """Gemini reports STOP even when the turn ends in function calls."""
        stop_reason, warning = self.map_stop_reason(raw)
        if saw_function_call and stop_reason == "end_turn":
            return "tool_use", warning
        return stop_reason, warning

    def from_provider_response(
        self,
        response: dict[str, Any],
        model: str,
        tool_id_mapper: ToolIDMapper,
    ) -> CanonicalResponse:
        candidates = response.get("candidates")
        if not candidates:
            block_reason = (response.get("promptFeedback") or {}).get("blockReason")
            if not block_reason:
                raise UpstreamProtocolError(
                    f"{self.name} response has no candidates", provider=self.name
                )
            return CanonicalResponse(
                id=generate_message_id(),
                model=model,
                content=(),
                stop_reason="error",
                usage=_usage(response.get("usageMetadata")) or Usage(),
                warnings=(f"prompt blocked: {block_reason}",),
            )

        candidate = candidates[0] or {}
        content: list[ContentBlock] = []
        saw_function_call = False
        for position, part in enumerate((candidate.get("content") or {}).get("parts") or []):
            if part.get("text"):
                content.append(ContentBlock.text_block(part["text"]))
            elif "functionCall" in part:
                saw_function_call = True
                call = part["functionCall"] or {}
                name = call.get("name", "")
                content.append(
                    ContentBlock.tool_use(
                        id=tool_id_mapper.to_canonical_id(call.get("id") or f"{name}_{position}"),
                        name=name,
                        input=call.get("args") or {},
                    )
                )

        stop_reason, warning = self.finish_to_stop_reason(
            candidate.get("finishReason"), saw_function_call
        )

        return CanonicalResponse(
            id=generate_message_id(),
            model=response.get("modelVersion") or model,
            content=tuple(content),
            stop_reason=stop_reason,
            usage=_usage(response.get("usageMetadata")) or Usage(),
            warnings=(warning,) if warning else (),
        )

    def new_stream_decoder(self, tool_id_mapper: ToolIDMapper) -> StreamDecoder:
        return GeminiStreamDecoder(self, tool_id_mapper)


class GeminiStreamDecoder(StreamDecoder):
    """Parses Gemini SSE chunks into upstream deltas.

    Function calls arrive whole, so each one opens, fills and closes its own
    tool_use block within a single chunk.
    """

    def __init__(self, adapter: GeminiAdapter, tool_id_mapper: ToolIDMapper) -> None:
        self._adapter = adapter
        self._mapper = tool_id_mapper
        self._text_open = False
        self._calls = 0

    def decode_stream_chunk(self, line: str) -> list[UpstreamDelta]:
        data_str = self.sse_data(line)
        if not data_str:
            return []

        data = self.parse_json(data_str, self._adapter.name)
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise UpstreamProtocolError(
                f"{self._adapter.name} stream error: {message}", provider=self._adapter.name
            )

        deltas: list[UpstreamDelta] = []
        usage = _usage(data.get("usageMetadata"))
        if usage:
            deltas.append(UpstreamDelta(kind="usage", usage=usage))

        candidates = data.get("candidates") or []
        if not candidates:
            return deltas
        candidate = candidates[0] or {}

        for part in (candidate.get("content") or {}).get("parts") or []:
            if part.get("text"):
                self._text_open = True
                deltas.append(UpstreamDelta(kind="text", slot="text", text=part["text"]))
            elif "functionCall" in part:
                if self._text_open:
                    deltas.append(UpstreamDelta(kind="block_stop", slot="text"))
                    self._text_open = False
                call = part["functionCall"] or {}
                name = call.get("name", "")
                slot = f"tool:{self._calls}"
                tool_id = self._mapper.to_canonical_id(call.get("id") or f"{name}_{self._calls}")
                self._calls += 1
                deltas.append(
                    UpstreamDelta(kind="tool_start", slot=slot, tool_id=tool_id, tool_name=name)
                )
                deltas.append(
                    UpstreamDelta(
                        kind="tool_args", slot=slot, text=json.dumps(call.get("args") or {})
                    )
                )
                deltas.append(UpstreamDelta(kind="block_stop", slot=slot))

        finish_reason = candidate.get("finishReason")
        if finish_reason:
            stop_reason, _ = self._adapter.finish_to_stop_reason(finish_reason, self._calls > 0)
            deltas.append(
                UpstreamDelta(
                    kind="finish",
                    stop_reason=stop_reason,
                    raw_reason=finish_reason,
                    usage=usage,
                )
            )
        return deltas
