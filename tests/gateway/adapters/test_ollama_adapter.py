"""Tests for the Ollama native chat adapter."""

import json

import pytest

from claude_proxy.gateway.adapters import OllamaAdapter
from claude_proxy.gateway.errors import UnsupportedFeatureError, UpstreamProtocolError
from claude_proxy.gateway.transforms.tool_id_mapper import ToolIDMapper


@pytest.fixture
def adapter(ollama_provider):
    return OllamaAdapter(ollama_provider)


class TestOllamaRequest:
    def test_simple_request(self, adapter, make_request):
        request = make_request(
            "Hello", system="Be brief", temperature=0.2, top_k=40, stop_sequences=("###",)
        )

        result = adapter.to_provider_request(request, "llama2", ToolIDMapper())

        assert result.path == "/api/chat"
        assert result.stream is False
        assert result.body == {
            "model": "llama2",
            "messages": [
                {"role": "system", "content": "Be brief"},
                {"role": "user", "content": "Hello"},
            ],
            "stream": False,
            "options": {
                "num_predict": 4096,
                "temperature": 0.2,
                "top_k": 40,
                "stop": ["###"],
            },
        }

    def test_headers_have_no_auth(self, adapter):
        assert adapter.headers() == {"Content-Type": "application/json"}

    def test_tools_rejected(self, adapter, tool_conversation):
        with pytest.raises(UnsupportedFeatureError) as exc_info:
            adapter.check_capabilities(tool_conversation)

        assert exc_info.value.normalized.http_status == 400
        with pytest.raises(UnsupportedFeatureError):
            adapter.to_provider_request(tool_conversation, "llama2", ToolIDMapper())


class TestOllamaResponse:
    def test_text_response(self, adapter):
        response = {
            "model": "llama2",
            "message": {"role": "assistant", "content": "Hi there"},
            "done": True,
            "done_reason": "length",
            "prompt_eval_count": 12,
            "eval_count": 30,
        }

        result = adapter.from_provider_response(response, "llama2", ToolIDMapper())

        assert result.content[0].text == "Hi there"
        assert result.stop_reason == "max_tokens"
        assert result.usage.input_tokens == 12
        assert result.usage.output_tokens == 30

    def test_missing_message_raises(self, adapter):
        with pytest.raises(UpstreamProtocolError):
            adapter.from_provider_response({"done": True}, "llama2", ToolIDMapper())


class TestOllamaStreamDecoder:
    def test_ndjson_lines(self, adapter):
        decoder = adapter.new_stream_decoder(ToolIDMapper())

        first = decoder.decode_stream_chunk(
            json.dumps({"message": {"role": "assistant", "content": "Hel"}, "done": False})
        )
        last = decoder.decode_stream_chunk(
            json.dumps(
                {
                    "message": {"role": "assistant", "content": ""},
                    "done": True,
                    "done_reason": "stop",
                    "prompt_eval_count": 4,
                    "eval_count": 2,
                }
            )
        )

        assert [(d.kind, d.text) for d in first] == [("text", "Hel")]
        (finish,) = last
        assert finish.kind == "finish"
        assert finish.stop_reason == "end_turn"
        assert finish.usage.input_tokens == 4
        assert finish.usage.output_tokens == 2

    def test_blank_line_ignored(self, adapter):
        assert adapter.new_stream_decoder(ToolIDMapper()).decode_stream_chunk("   ") == []

    def test_error_line_raises(self, adapter):
        decoder = adapter.new_stream_decoder(ToolIDMapper())

        with pytest.raises(UpstreamProtocolError, match="model not found"):
            decoder.decode_stream_chunk('{"error": "model not found"}')

    def test_non_object_line_raises(self, adapter):
        decoder = adapter.new_stream_decoder(ToolIDMapper())

        with pytest.raises(UpstreamProtocolError):
            decoder.decode_stream_chunk("[1, 2]")
