"""Anthropic Messages API transformer.

Converts between the Anthropic Messages API wire format and the canonical
types. The gateway's own clients speak this format, and so do
Anthropic-compatible upstreams (GLM/Z.AI).

Anthropic API Reference:
- Request: POST /v1/messages with {messages, max_tokens, model, stream, tools, system}
- Response: {id, type, role, content, model, stop_reason, usage}
- Streaming: SSE events (message_start, content_block_start/delta/stop, message_delta, message_stop)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, cast

from .types import (
    CanonicalRequest,
    CanonicalResponse,
    ContentBlock,
    Message,
    Role,
    StreamEvent,
    ToolDefinition,
)

logger = logging.getLogger(__name__)


def _flatten_text(content: Any) -> str:
    """Tool result and system content can be a string or a list of blocks."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            c.get("text", "") for c in content if isinstance(c, dict) and c.get("type") == "text"
        )
    return str(content)


@dataclass
class AnthropicTransformer:
    """Transforms Anthropic API format to/from canonical format."""

    def to_canonical(self, body: dict[str, Any], provider: str | None = None) -> CanonicalRequest:
        """Convert an Anthropic Messages API request to canonical format.

        Unknown content block types (images, thinking) are dropped.

        Args:
            body: Anthropic request body (already validated)
            provider: Explicit provider selection, overrides metadata.provider

        Returns:
            CanonicalRequest
        """
        messages = tuple(
            Message(
                role=cast(Role, msg["role"]),
                content=self.parse_blocks(msg.get("content")),
            )
            for msg in body.get("messages", [])
        )

        tools = tuple(
            ToolDefinition(
                name=tool["name"],
                description=tool.get("description") or "",
                input_schema=tool.get("input_schema") or {},
            )
            for tool in body.get("tools") or []
        )

        system = body.get("system")
        if isinstance(system, list):
            system = "\n".join(
                block.get("text", "") for block in system if block.get("type") == "text"
            )

        metadata = body.get("metadata") or {}
        metadata_provider = metadata.get("provider")
        if not isinstance(metadata_provider, str):
            metadata_provider = None
        temperature = body.get("temperature", 1.0)

        return CanonicalRequest(
            messages=messages,
            model=body.get("model"),
            system=system or None,
            max_tokens=body.get("max_tokens") or 4096,
            temperature=temperature,
            top_p=body.get("top_p"),
            top_k=body.get("top_k"),
            stop_sequences=tuple(body.get("stop_sequences") or ()),
            tools=tools,
            stream=bool(body.get("stream", False)),
            provider=provider or metadata_provider,
        )

    def parse_blocks(self, content: Any) -> tuple[ContentBlock, ...]:
        """Parse message content (string or block list) into content blocks."""
        if content is None or content == "":
            return ()
        if isinstance(content, str):
            return (ContentBlock.text_block(content),)

        blocks: list[ContentBlock] = []
        for block in content:
            block_type = block.get("type")
            if block_type == "text":
                blocks.append(ContentBlock.text_block(block.get("text") or ""))
            elif block_type == "tool_use":
                blocks.append(
                    ContentBlock.tool_use(
                        id=block.get("id") or "",
                        name=block.get("name") or "",
                        input=block.get("input") or {},
                    )
                )
            elif block_type == "tool_result":
                blocks.append(
                    ContentBlock.tool_result(
                        tool_use_id=block.get("tool_use_id") or "",
                        text=_flatten_text(block.get("content")),
                        is_error=bool(block.get("is_error")),
                    )
                )
            else:
                logger.debug("Dropping unsupported content block type: %s", block_type)
        return tuple(blocks)

    def block_to_dict(self, block: ContentBlock) -> dict[str, Any]:
        if block.type == "tool_use":
            return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
        if block.type == "tool_result":
            result: dict[str, Any] = {
                "type": "tool_result",
                "tool_use_id": block.tool_use_id,
                "content": block.text,
            }
            if block.is_error:
                result["is_error"] = True
            return result
        return {"type": "text", "text": block.text}

    def from_canonical(self, request: CanonicalRequest, model: str) -> dict[str, Any]:
        """Convert a canonical request back to an Anthropic request body.

        System-role messages are folded into the top-level ``system`` field.
        """
        system_parts = [request.system] if request.system else []
        messages: list[dict[str, Any]] = []
        for msg in request.messages:
            if msg.role == "system":
                if msg.text:
                    system_parts.append(msg.text)
                continue
            messages.append(
                {
                    "role": msg.role,
                    "content": [self.block_to_dict(b) for b in msg.content],
                }
            )

        body: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": request.max_tokens,
            "stream": request.stream,
        }
        if system_parts:
            body["system"] = "\n".join(system_parts)
        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.top_p is not None:
            body["top_p"] = request.top_p
        if request.top_k is not None:
            body["top_k"] = request.top_k
        if request.stop_sequences:
            body["stop_sequences"] = list(request.stop_sequences)
        if request.tools:
            body["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.input_schema or {"type": "object", "properties": {}},
                }
                for tool in request.tools
            ]
        return body

    def response_to_dict(self, response: CanonicalResponse) -> dict[str, Any]:
        """Convert a canonical response to Anthropic Messages API format."""
        return {
            "id": response.id,
            "type": "message",
            "role": "assistant",
            "content": [self.block_to_dict(b) for b in response.content],
            "model": response.model,
            "stop_reason": response.stop_reason,
            "stop_sequence": response.stop_sequence,
            "usage": {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        }

    def event_to_sse(self, event: StreamEvent) -> bytes:
        """Convert a stream event to SSE-formatted bytes."""
        return self._format_sse_event(event.type, event.to_dict()).encode("utf-8")

    def _format_sse_event(self, event_type: str, data: dict[str, Any]) -> str:
        """Format data as an SSE event.

        Args:
            event_type: The SSE event type
            data: The event data to serialize

        Returns:
            SSE-formatted string with event and data lines
        """
        json_data = json.dumps(data, separators=(",", ":"))
        return f"event: {event_type}\ndata: {json_data}\n\n"
