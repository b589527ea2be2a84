"""Tests for RequestTracer."""

import json
import re

from claude_proxy.gateway.tracing import RequestTracer


class TestGenerateTraceId:
    def test_format(self):
        tracer = RequestTracer()
        body = {"messages": [{"role": "user", "content": "Please write a poem about cats"}]}

        trace_id = tracer.generate_trace_id(body, provider="ollama")

        assert re.fullmatch(r"00001_\d{6}_ollama_1msgs_Please_write_a", trace_id)

    def test_counter_increments(self):
        tracer = RequestTracer()

        first = tracer.generate_trace_id({"messages": []})
        second = tracer.generate_trace_id({"messages": []})

        assert first.startswith("00001_")
        assert second.startswith("00002_")
        assert first.endswith("_default_0msgs_empty")

    def test_skips_tool_result_turns(self):
        tracer = RequestTracer()
        body = {
            "messages": [
                {"role": "user", "content": [{"type": "text", "text": "Check <b>weather"}]},
                {"role": "assistant", "content": [{"type": "tool_use", "id": "t", "name": "w"}]},
                {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "t"}]},
            ]
        }

        trace_id = tracer.generate_trace_id(body, provider="open-ai")

        assert trace_id.endswith("_openai_3msgs_Check")

    def test_non_dict_body(self):
        trace_id = RequestTracer().generate_trace_id(["not", "a", "dict"])  # type: ignore[arg-type]

        assert trace_id.endswith("_default_0msgs_empty")


class TestSaveDebug:
    def test_disabled_without_debug_dir(self, tmp_path):
        tracer = RequestTracer()

        tracer.save_debug("trace", "1_request.json", {"a": 1})

        assert tracer.debug_dir is None
        assert list(tmp_path.iterdir()) == []

    def test_writes_json(self, tmp_path):
        tracer = RequestTracer(debug_dir=tmp_path)

        tracer.save_debug("00001_trace", "1_request.json", {"a": 1})

        path = tracer.debug_dir / "00001_trace" / "1_request.json"
        assert json.loads(path.read_text()) == {"a": 1}
        assert tracer.debug_dir.parent == tmp_path / "logs"

    def test_write_failure_is_logged(self, tmp_path, caplog):
        blocker = tmp_path / "file"
        blocker.write_text("")
        tracer = RequestTracer(debug_dir=blocker)

        tracer.save_debug("trace", "1_request.json", {"a": 1})

        assert "Failed to save debug file" in caplog.text
