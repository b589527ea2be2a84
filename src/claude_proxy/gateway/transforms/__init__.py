"""Format transformers between the Anthropic wire format and canonical types."""

from claude_proxy.gateway.transforms.anthropic import AnthropicTransformer
from claude_proxy.gateway.transforms.tool_id_mapper import ToolIDMapper
from claude_proxy.gateway.transforms.types import (
    STOP_REASONS,
    CanonicalRequest,
    CanonicalResponse,
    ContentBlock,
    Message,
    ProviderRequest,
    StopReason,
    StreamEvent,
    ToolDefinition,
    UpstreamDelta,
    Usage,
)
from claude_proxy.gateway.transforms.validation import validate_request

__all__ = [
    "STOP_REASONS",
    "AnthropicTransformer",
    "CanonicalRequest",
    "CanonicalResponse",
    "ContentBlock",
    "Message",
    "ProviderRequest",
    "StopReason",
    "StreamEvent",
    "ToolDefinition",
    "ToolIDMapper",
    "UpstreamDelta",
    "Usage",
    "validate_request",
]
