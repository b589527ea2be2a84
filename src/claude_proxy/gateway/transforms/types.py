"""Provider-agnostic request, response and stream types.

Every adapter converts to and from these types. They are modeled on the
Anthropic Messages API, which is the wire protocol the gateway exposes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, get_args

Role = Literal["user", "assistant", "system"]
BlockType = Literal["text", "tool_use", "tool_result"]
StopReason = Literal["end_turn", "max_tokens", "stop_sequence", "tool_use", "error"]
EventType = Literal[
    "message_start",
    "content_block_start",
    "content_block_delta",
    "content_block_stop",
    "message_delta",
    "message_stop",
    "error",
]
DeltaKind = Literal["text", "tool_start", "tool_args", "block_stop", "usage", "finish", "done"]

STOP_REASONS: frozenset[str] = frozenset(get_args(StopReason))


@dataclass(frozen=True)
class ContentBlock:
    """A single content block (text, tool_use or tool_result)."""

    type: BlockType
    text: str = ""

    # tool_use
    id: str | None = None
    name: str | None = None
    input: dict[str, Any] = field(default_factory=dict)

    # tool_result
    tool_use_id: str | None = None
    is_error: bool = False

    @classmethod
    def text_block(cls, text: str) -> ContentBlock:
        return cls(type="text", text=text)

    @classmethod
    def tool_use(cls, id: str, name: str, input: dict[str, Any]) -> ContentBlock:
        return cls(type="tool_use", id=id, name=name, input=input)

    @classmethod
    def tool_result(cls, tool_use_id: str, text: str, is_error: bool = False) -> ContentBlock:
        return cls(type="tool_result", tool_use_id=tool_use_id, text=text, is_error=is_error)


@dataclass(frozen=True)
class Message:
    """A conversation turn with ordered content blocks."""

    role: Role
    content: tuple[ContentBlock, ...] = ()

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "".join(b.text for b in self.content if b.type == "text")

    @property
    def tool_uses(self) -> tuple[ContentBlock, ...]:
        return tuple(b for b in self.content if b.type == "tool_use")

    @property
    def tool_results(self) -> tuple[ContentBlock, ...]:
        return tuple(b for b in self.content if b.type == "tool_result")


@dataclass(frozen=True)
class ToolDefinition:
    """A tool the model may call, described by a JSON schema."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CanonicalRequest:
    """Provider-agnostic request parsed from an inbound Messages API call."""

    messages: tuple[Message, ...]
    model: str | None = None
    system: str | None = None
    max_tokens: int = 4096
    temperature: float | None = 1.0
    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: tuple[str, ...] = ()
    tools: tuple[ToolDefinition, ...] = ()
    stream: bool = False
    provider: str | None = None

    @property
    def uses_tools(self) -> bool:
        """True if the request declares tools or carries tool blocks."""
        if self.tools:
            return True
        return any(b.type in ("tool_use", "tool_result") for m in self.messages for b in m.content)


@dataclass(frozen=True)
class Usage:
    """Token usage counts."""

    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class CanonicalResponse:
    """Provider-agnostic non-streaming response."""

    id: str
    model: str
    content: tuple[ContentBlock, ...]
    stop_reason: StopReason
    usage: Usage = field(default_factory=Usage)
    stop_sequence: str | None = None
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class StreamEvent:
    """One unit of the canonical incremental-output protocol.

    ``index`` is set for content-block events only. ``payload`` holds the
    tag-specific fields (``message``, ``content_block``, ``delta``,
    ``usage`` or ``error``) exactly as they appear on the wire.
    """

    type: EventType
    index: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in ("message_stop", "error")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.index is not None:
            data["index"] = self.index
        data.update(self.payload)
        return data


@dataclass(frozen=True)
class UpstreamDelta:
    """A decoded unit of provider stream output.

    Decoders emit these; the shared stream state machine turns them into
    StreamEvents. ``slot`` identifies the upstream block (e.g. ``"text"`` or
    ``"tool:0"``) and is mapped to a canonical index on first sight.
    """

    kind: DeltaKind
    slot: str = ""
    text: str = ""
    tool_id: str | None = None
    tool_name: str | None = None
    stop_reason: StopReason | None = None
    stop_sequence: str | None = None
    raw_reason: str | None = None
    usage: Usage | None = None


@dataclass(frozen=True)
class ProviderRequest:
    """A provider-native request ready to send upstream."""

    path: str
    body: dict[str, Any]
    stream: bool = False
    # Parameters the provider does not accept; kept for telemetry.
    dropped_params: tuple[str, ...] = ()
