"""Tests for the shared stream state machine."""

import pytest

from claude_proxy.gateway.errors import StreamInterruptedError, UpstreamConnectionError
from claude_proxy.gateway.streaming import StreamState, StreamTranscoder, generate_message_id
from claude_proxy.gateway.transforms.types import STOP_REASONS, UpstreamDelta, Usage


def text(chunk: str, slot: str = "text") -> UpstreamDelta:
    return UpstreamDelta(kind="text", slot=slot, text=chunk)


def finish(stop_reason="end_turn", usage=None) -> UpstreamDelta:
    return UpstreamDelta(kind="finish", stop_reason=stop_reason, usage=usage)


def run(machine: StreamTranscoder, *deltas: UpstreamDelta) -> list:
    events = []
    for delta in deltas:
        events.extend(machine.feed(delta))
    events.extend(machine.finish())
    return events


def assert_well_framed(events):
    """One message_start first, one terminal event last, per-index order."""
    types = [e.type for e in events]
    assert types[0] == "message_start"
    assert types.count("message_start") == 1
    assert types[-1] in ("message_stop", "error")
    assert sum(t in ("message_stop", "error") for t in types) == 1

    seen: dict[int, str] = {}
    for event in events:
        if event.index is None:
            continue
        state = seen.get(event.index)
        if event.type == "content_block_start":
            assert state is None
            seen[event.index] = "open"
        elif event.type == "content_block_delta":
            assert state == "open"
        elif event.type == "content_block_stop":
            assert state == "open"
            seen[event.index] = "closed"


class TestStreamTranscoder:
    """Tests for StreamTranscoder state transitions."""

    def test_text_stream(self):
        machine = StreamTranscoder(model="llama2")

        events = run(machine, text("Hel"), text("lo"), finish(usage=Usage(5, 2)))

        assert [e.type for e in events] == [
            "message_start",
            "content_block_start",
            "content_block_delta",
            "content_block_delta",
            "content_block_stop",
            "message_delta",
            "message_stop",
        ]
        assert events[0].payload["message"]["model"] == "llama2"
        assert events[2].to_dict() == {
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "text_delta", "text": "Hel"},
        }
        assert events[5].payload == {
            "delta": {"stop_reason": "end_turn", "stop_sequence": None},
            "usage": {"input_tokens": 5, "output_tokens": 2},
        }
        assert machine.state == StreamState.FINISHED
        assert_well_framed(events)

    def test_start_emits_once(self):
        machine = StreamTranscoder(model="m")

        assert len(machine.start()) == 1
        assert machine.start() == []
        assert machine.state == StreamState.STARTED

    def test_text_then_tool_call(self):
        machine = StreamTranscoder(model="gpt-4o")

        events = run(
            machine,
            text("Checking"),
            UpstreamDelta(kind="block_stop", slot="text"),
            UpstreamDelta(kind="tool_start", slot="tool:0", tool_id="toolu_1", tool_name="get"),
            UpstreamDelta(kind="tool_args", slot="tool:0", text='{"city":'),
            UpstreamDelta(kind="tool_args", slot="tool:0", text='"Paris"}'),
            finish("tool_use"),
        )

        starts = [e for e in events if e.type == "content_block_start"]
        assert [s.index for s in starts] == [0, 1]
        assert starts[1].payload["content_block"] == {
            "type": "tool_use",
            "id": "toolu_1",
            "name": "get",
            "input": {},
        }
        json_deltas = [
            e.payload["delta"]["partial_json"]
            for e in events
            if e.type == "content_block_delta" and e.index == 1
        ]
        assert "".join(json_deltas) == '{"city":"Paris"}'
        assert events[-2].payload["delta"]["stop_reason"] == "tool_use"
        assert_well_framed(events)

    def test_parallel_tool_calls_may_interleave(self):
        machine = StreamTranscoder(model="m")

        events = run(
            machine,
            UpstreamDelta(kind="tool_start", slot="tool:0", tool_id="a", tool_name="f"),
            UpstreamDelta(kind="tool_start", slot="tool:1", tool_id="b", tool_name="g"),
            UpstreamDelta(kind="tool_args", slot="tool:0", text="{}"),
            UpstreamDelta(kind="tool_args", slot="tool:1", text="{}"),
            finish("tool_use"),
        )

        stops = [e.index for e in events if e.type == "content_block_stop"]
        assert stops == [0, 1]
        assert_well_framed(events)

    def test_indices_follow_first_appearance(self):
        machine = StreamTranscoder(model="m")

        events = run(
            machine,
            UpstreamDelta(kind="tool_start", slot="tool:5", tool_id="a", tool_name="f"),
            text("after"),
            finish(),
        )

        starts = {
            e.payload["content_block"]["type"]: e.index
            for e in events
            if e.type == "content_block_start"
        }
        assert starts == {"tool_use": 0, "text": 1}

    def test_reused_slot_opens_new_block(self):
        machine = StreamTranscoder(model="m")

        events = run(
            machine,
            text("one"),
            UpstreamDelta(kind="block_stop", slot="text"),
            text("two"),
            finish(),
        )

        starts = [e.index for e in events if e.type == "content_block_start"]
        assert starts == [0, 1]
        assert_well_framed(events)

    def test_empty_text_opens_no_block(self):
        machine = StreamTranscoder(model="m")

        events = run(machine, text(""), finish())

        assert [e.type for e in events] == ["message_start", "message_delta", "message_stop"]

    def test_usage_merges_across_deltas(self):
        machine = StreamTranscoder(model="m")

        events = run(
            machine,
            UpstreamDelta(kind="usage", usage=Usage(input_tokens=10)),
            text("x"),
            finish(usage=Usage(output_tokens=4)),
        )

        assert events[-2].payload["usage"] == {"input_tokens": 10, "output_tokens": 4}

    def test_done_counts_as_completion(self):
        machine = StreamTranscoder(model="m")

        events = run(machine, text("x"), UpstreamDelta(kind="done"))

        assert events[-1].type == "message_stop"
        assert events[-2].payload["delta"]["stop_reason"] == "end_turn"

    def test_end_without_finish_raises(self):
        machine = StreamTranscoder(model="m")
        machine.feed(text("x"))

        with pytest.raises(StreamInterruptedError):
            machine.finish()

    def test_abrupt_close_after_three_deltas(self):
        """Three text deltas then EOF without finish: three deltas, then one error."""
        machine = StreamTranscoder(model="llama2")
        events = []
        for chunk in ("a", "b", "c"):
            events.extend(machine.feed(text(chunk)))
        try:
            events.extend(machine.finish())
        except StreamInterruptedError as e:
            events.extend(machine.fail(e.normalized))

        types = [e.type for e in events]
        assert types.count("content_block_delta") == 3
        assert types[-1] == "error"
        assert "message_stop" not in types
        assert events[-1].payload["error"]["kind"] == "StreamInterruptedError"
        assert machine.state == StreamState.ERRORED
        assert_well_framed(events)

    def test_error_while_idle_still_starts_message(self):
        machine = StreamTranscoder(model="m")

        events = machine.fail(UpstreamConnectionError("timed out", http_status=504).normalized)

        assert [e.type for e in events] == ["message_start", "error"]
        assert events[1].to_dict()["error"]["type"] == "api_error"

    def test_terminal_state_ignores_input(self):
        machine = StreamTranscoder(model="m")
        run(machine, text("x"), finish())

        assert machine.feed(text("late")) == []
        assert machine.finish() == []
        assert machine.fail(UpstreamConnectionError("x").normalized) == []

    def test_stop_reasons_are_canonical(self):
        machine = StreamTranscoder(model="m")

        events = run(machine, text("x"), finish("max_tokens"))

        assert events[-2].payload["delta"]["stop_reason"] in STOP_REASONS


def test_generate_message_id_unique():
    ids = {generate_message_id() for _ in range(100)}

    assert len(ids) == 100
    assert all(i.startswith("msg_") for i in ids)
