"""Streaming transcoder state machine.

Provider decoders turn raw upstream lines into ``UpstreamDelta`` values.
``StreamTranscoder`` turns those into canonical ``StreamEvent`` values and
enforces the framing guarantees:

- the sequence starts with exactly one ``message_start``;
- per content-block index: start, then deltas in arrival order, then stop;
- the sequence ends with exactly one ``message_stop`` or ``error``.

States::

    IDLE -> STARTED -> STREAMING -> FINISHED
      \\________\\___________\\-----> ERRORED
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

from claude_proxy.gateway.errors import NormalizedError, StreamInterruptedError
from claude_proxy.gateway.transforms.types import (
    StopReason,
    StreamEvent,
    UpstreamDelta,
    Usage,
)

logger = logging.getLogger(__name__)


class StreamState(Enum):
    """Stream transcoder states."""

    IDLE = auto()
    STARTED = auto()
    STREAMING = auto()
    FINISHED = auto()
    ERRORED = auto()


TERMINAL_STATES = frozenset({StreamState.FINISHED, StreamState.ERRORED})


def generate_message_id() -> str:
    """Generate a unique message ID in Anthropic format."""
    return f"msg_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


@dataclass
class _Block:
    index: int
    type: str
    open: bool = True


@dataclass
class StreamTranscoder:
    """Shared state machine for every provider's stream.

    Example:
        >>> machine = StreamTranscoder(model="llama2")
        >>> events = machine.start()
        >>> events += machine.feed(UpstreamDelta(kind="text", slot="text", text="Hi"))
        >>> events += machine.feed(UpstreamDelta(kind="finish", stop_reason="end_turn"))
        >>> events += machine.finish()
        >>> [e.type for e in events][-2:]
        ['message_delta', 'message_stop']
    """

    model: str
    message_id: str = field(default_factory=generate_message_id)
    state: StreamState = StreamState.IDLE

    _blocks: dict[str, _Block] = field(default_factory=dict)
    _next_index: int = 0
    _finish_seen: bool = False
    _stop_reason: StopReason = "end_turn"
    _stop_sequence: str | None = None
    _usage: Usage = field(default_factory=Usage)

    @property
    def terminated(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def usage(self) -> Usage:
        return self._usage

    def start(self, usage: Usage | None = None) -> list[StreamEvent]:
        """IDLE -> STARTED on the first upstream chunk. No-op afterwards."""
        if self.state != StreamState.IDLE:
            return []
        if usage:
            self._merge_usage(usage)
        self.state = StreamState.STARTED
        return [
            StreamEvent(
                type="message_start",
                payload={
                    "message": {
                        "id": self.message_id,
                        "type": "message",
                        "role": "assistant",
                        "content": [],
                        "model": self.model,
                        "stop_reason": None,
                        "stop_sequence": None,
                        "usage": {
                            "input_tokens": self._usage.input_tokens,
                            "output_tokens": self._usage.output_tokens,
                        },
                    }
                },
            )
        ]

    def feed(self, delta: UpstreamDelta) -> list[StreamEvent]:
        """Apply one decoded upstream delta."""
        if self.terminated:
            return []

        events = self.start()

        if delta.kind == "text":
            if delta.text:
                block, opened = self._block_for(delta.slot or "text", "text")
                events.extend(opened)
                events.append(
                    StreamEvent(
                        type="content_block_delta",
                        index=block.index,
                        payload={"delta": {"type": "text_delta", "text": delta.text}},
                    )
                )

        elif delta.kind == "tool_start":
            _, opened = self._block_for(
                delta.slot,
                "tool_use",
                tool_id=delta.tool_id,
                tool_name=delta.tool_name,
            )
            events.extend(opened)

        elif delta.kind == "tool_args":
            if delta.text:
                block, opened = self._block_for(delta.slot, "tool_use", tool_id=delta.tool_id)
                events.extend(opened)
                events.append(
                    StreamEvent(
                        type="content_block_delta",
                        index=block.index,
                        payload={"delta": {"type": "input_json_delta", "partial_json": delta.text}},
                    )
                )

        elif delta.kind == "block_stop":
            block = self._blocks.get(delta.slot)
            if block and block.open:
                events.append(self._close(block))

        elif delta.kind == "usage":
            if delta.usage:
                self._merge_usage(delta.usage)

        elif delta.kind == "finish":
            self._finish_seen = True
            if delta.stop_reason:
                self._stop_reason = delta.stop_reason
            self._stop_sequence = delta.stop_sequence
            if delta.usage:
                self._merge_usage(delta.usage)

        elif delta.kind == "done":
            self._finish_seen = True

        return events

    def finish(self) -> list[StreamEvent]:
        """Handle upstream end-of-stream.

        Raises:
            StreamInterruptedError: If the upstream closed without signalling
                completion. The caller routes it through ``fail()``.
        """
        if self.terminated:
            return []
        if not self._finish_seen:
            raise StreamInterruptedError("Upstream stream ended before completion")

        events = self.start()
        for block in sorted(self._blocks.values(), key=lambda b: b.index):
            if block.open:
                events.append(self._close(block))

        events.append(
            StreamEvent(
                type="message_delta",
                payload={
                    "delta": {
                        "stop_reason": self._stop_reason,
                        "stop_sequence": self._stop_sequence,
                    },
                    "usage": {
                        "input_tokens": self._usage.input_tokens,
                        "output_tokens": self._usage.output_tokens,
                    },
                },
            )
        )
        events.append(StreamEvent(type="message_stop"))
        self.state = StreamState.FINISHED
        return events

    def fail(self, error: NormalizedError) -> list[StreamEvent]:
        """Transition to ERRORED and emit the terminal error event.

        Open blocks are left open: the error event terminates the sequence.
        """
        if self.terminated:
            return []
        events = self.start()
        events.append(StreamEvent(type="error", payload={"error": error.to_dict()["error"]}))
        self.state = StreamState.ERRORED
        return events

    def _block_for(
        self,
        slot: str,
        block_type: str,
        tool_id: str | None = None,
        tool_name: str | None = None,
    ) -> tuple[_Block, list[StreamEvent]]:
        """Return the block for a slot, opening it on first sight."""
        block = self._blocks.get(slot)
        if block is not None and block.open:
            return block, []

        # A slot reused after its block closed starts a fresh block
        block = _Block(index=self._next_index, type=block_type)
        self._next_index += 1
        self._blocks[slot] = block
        self.state = StreamState.STREAMING

        content_block: dict[str, Any]
        if block_type == "tool_use":
            content_block = {
                "type": "tool_use",
                "id": tool_id or "",
                "name": tool_name or "",
                "input": {},
            }
        else:
            content_block = {"type": "text", "text": ""}

        return block, [
            StreamEvent(
                type="content_block_start",
                index=block.index,
                payload={"content_block": content_block},
            )
        ]

    def _close(self, block: _Block) -> StreamEvent:
        block.open = False
        return StreamEvent(type="content_block_stop", index=block.index)

    def _merge_usage(self, usage: Usage) -> None:
        self._usage = Usage(
            input_tokens=usage.input_tokens or self._usage.input_tokens,
            output_tokens=usage.output_tokens or self._usage.output_tokens,
        )
