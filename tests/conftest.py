"""Pytest configuration and fixtures."""

from collections.abc import Callable
from typing import Any

import pytest

from claude_proxy.gateway.registry import ProviderConfig, ProviderRegistry, parse_model_mapping
from claude_proxy.gateway.transforms.types import (
    CanonicalRequest,
    ContentBlock,
    Message,
    ToolDefinition,
)

OLLAMA_URL = "http://ollama.test:11434"
OPENAI_URL = "https://api.openai.test/v1"
VLLM_URL = "http://vllm.test:8000/v1"
GEMINI_URL = "https://gemini.test/v1beta"
GLM_URL = "https://glm.test/api/anthropic"

OPENAI_KEY = "sk-test-secret-key-1234"


@pytest.fixture
def ollama_provider() -> ProviderConfig:
    return ProviderConfig(
        name="ollama",
        base_url=OLLAMA_URL,
        model="llama2",
        model_mapping=parse_model_mapping("claude-3-haiku:llama2,claude-3-sonnet:llama2:13b"),
        first_byte_timeout=2.0,
        idle_timeout=2.0,
    )


@pytest.fixture
def openai_provider() -> ProviderConfig:
    return ProviderConfig(
        name="openai",
        base_url=OPENAI_URL,
        api_key=OPENAI_KEY,
        model="gpt-4o-mini",
        model_mapping={"claude-3-opus": "gpt-4o"},
        first_byte_timeout=2.0,
        idle_timeout=2.0,
    )


@pytest.fixture
def vllm_provider() -> ProviderConfig:
    return ProviderConfig(name="vllm", base_url=VLLM_URL, model="default")


@pytest.fixture
def gemini_provider() -> ProviderConfig:
    return ProviderConfig(
        name="gemini",
        base_url=GEMINI_URL,
        api_key="gemini-test-key",
        model="gemini-pro",
    )


@pytest.fixture
def glm_provider() -> ProviderConfig:
    return ProviderConfig(
        name="glm",
        base_url=GLM_URL,
        api_key="glm-test-key",
        model="GLM-4.6",
    )


@pytest.fixture
def registry(
    ollama_provider, openai_provider, vllm_provider, gemini_provider, glm_provider
) -> ProviderRegistry:
    """Registry with every adapter kind; ollama is the default."""
    return ProviderRegistry(
        [ollama_provider, openai_provider, vllm_provider, gemini_provider, glm_provider],
        default_provider="ollama",
    )


@pytest.fixture
def make_request() -> Callable[..., CanonicalRequest]:
    """Factory for canonical requests with a single user turn."""

    def _make(text: str = "Hello", **kwargs: Any) -> CanonicalRequest:
        message = Message(role="user", content=(ContentBlock.text_block(text),))
        kwargs.setdefault("messages", (message,))
        return CanonicalRequest(**kwargs)

    return _make


@pytest.fixture
def weather_tool() -> ToolDefinition:
    return ToolDefinition(
        name="get_weather",
        description="Get the weather for a city",
        input_schema={
            "$schema": "http://json-schema.org/draft-07/schema#",
            "type": "object",
            "properties": {"city": {"type": "string", "title": "City"}},
            "required": ["city"],
            "additionalProperties": False,
        },
    )


@pytest.fixture
def tool_conversation(weather_tool) -> CanonicalRequest:
    """A finished tool round trip: question, tool call, tool result."""
    return CanonicalRequest(
        messages=(
            Message(role="user", content=(ContentBlock.text_block("Weather in Paris?"),)),
            Message(
                role="assistant",
                content=(
                    ContentBlock.text_block("Let me check."),
                    ContentBlock.tool_use(
                        id="toolu_abc123", name="get_weather", input={"city": "Paris"}
                    ),
                ),
            ),
            Message(
                role="user",
                content=(ContentBlock.tool_result(tool_use_id="toolu_abc123", text="Sunny, 22C"),),
            ),
        ),
        tools=(weather_tool,),
    )
