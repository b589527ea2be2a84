"""Pydantic models for Anthropic Messages API request validation.

These models validate incoming ``POST /v1/messages`` bodies before they are
converted to canonical requests. Unknown fields and unknown content block
types are allowed through; the transformer drops what it cannot use.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator


class ContentBlock(BaseModel):
    """Content block within a message.

    Can be text, tool_use, tool_result, or any other type (images, thinking),
    which passes validation and is dropped during transformation.
    """

    model_config = ConfigDict(extra="allow")

    type: Literal["text", "tool_use", "tool_result"] | str

    # For text blocks
    text: str | None = None

    # For tool_use blocks
    id: str | None = None
    name: str | None = None
    input: dict[str, Any] | None = None

    # For tool_result blocks
    tool_use_id: str | None = None
    content: str | list[dict[str, Any]] | None = None
    is_error: bool | None = None


class Message(BaseModel):
    """A message in the conversation."""

    model_config = ConfigDict(extra="allow")

    role: Literal["user", "assistant", "system"]
    content: str | list[ContentBlock]

    @field_validator("content", mode="before")
    @classmethod
    def validate_content(cls, v: Any) -> Any:
        """Empty content arrays are accepted (e.g. prefill) and treated as ""."""
        if isinstance(v, list) and len(v) == 0:
            return ""
        return v


class ToolDefinition(BaseModel):
    """Definition of an available tool."""

    model_config = ConfigDict(extra="allow")

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = {}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("tool name cannot be empty")
        return v


class SystemContentBlock(BaseModel):
    """Content block for system message (can be text with cache control)."""

    model_config = ConfigDict(extra="allow")

    type: Literal["text"] = "text"
    text: str
    cache_control: dict[str, str] | None = None


class MessagesRequest(BaseModel):
    """Anthropic Messages API request body."""

    model_config = ConfigDict(extra="allow")

    messages: list[Message]
    model: str | None = None
    max_tokens: int = 4096
    temperature: float = 1.0
    tools: list[ToolDefinition] | None = None
    stream: bool = False
    system: str | list[SystemContentBlock] | None = None

    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: list[str] | None = None
    metadata: dict[str, Any] | None = None

    @field_validator("messages")
    @classmethod
    def validate_messages(cls, v: list[Message]) -> list[Message]:
        if not v:
            raise ValueError("messages list cannot be empty")
        return v

    @field_validator("max_tokens")
    @classmethod
    def validate_max_tokens(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_tokens must be positive")
        return v

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        if v < 0 or v > 2:
            raise ValueError("temperature must be between 0 and 2")
        return v

    @field_validator("top_p")
    @classmethod
    def validate_top_p(cls, v: float | None) -> float | None:
        if v is not None and not 0 <= v <= 1:
            raise ValueError("top_p must be between 0 and 1")
        return v

    @field_validator("top_k")
    @classmethod
    def validate_top_k(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("top_k must be positive")
        return v

    @field_validator("metadata")
    @classmethod
    def validate_metadata(cls, v: dict[str, Any] | None) -> dict[str, Any] | None:
        if v is not None and "provider" in v and not isinstance(v["provider"], str):
            raise ValueError("metadata.provider must be a string")
        return v


def validate_request(body: Any) -> list[str]:
    """Validate an Anthropic Messages API request body.

    Args:
        body: The decoded request body

    Returns:
        List of validation error messages (empty if valid)
    """
    if not isinstance(body, dict):
        return ["request body must be a JSON object"]

    try:
        MessagesRequest.model_validate(body)
    except ValidationError as e:
        errors: list[str] = []
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            message = error["msg"].removeprefix("Value error, ")
            errors.append(f"{location}: {message}" if location else message)
        return errors

    return []
