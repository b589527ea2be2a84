"""Tool ID translation between canonical and provider formats.

IMPORTANT: This must be request-scoped (created per /v1/messages call).
Multi-turn tool conversations require consistent ID mapping within a request.

Canonical (Anthropic) ids look like ``toolu_XXXXX``. OpenAI-style providers
use ``call_XXXXX``; Gemini has no call ids at all, so its adapter asks the
mapper to mint canonical ids for positional keys.
"""

import time
from dataclasses import dataclass, field


@dataclass
class ToolIDMapper:
    """Bidirectional mapping of tool call IDs.

    Example usage:
        mapper = ToolIDMapper()

        # Provider returned a tool call:
        canonical_id = mapper.to_canonical_id("call_abc123")

        # Client sends the tool result back:
        provider_id = mapper.to_provider_id(canonical_id)
    """

    provider_prefix: str = "call_"
    _to_canonical: dict[str, str] = field(default_factory=dict)
    _to_provider: dict[str, str] = field(default_factory=dict)
    _counter: int = 0

    def to_canonical_id(self, provider_id: str) -> str:
        """Convert a provider tool call ID to canonical format.

        Creates a new mapping if one doesn't exist.
        """
        if provider_id not in self._to_canonical:
            self._counter += 1
            canonical_id = f"toolu_{int(time.time() * 1000)}_{self._counter}"
            self.register_mapping(provider_id, canonical_id)
        return self._to_canonical[provider_id]

    def to_provider_id(self, canonical_id: str) -> str:
        """Convert a canonical tool call ID to provider format.

        IDs the client carried over from earlier turns are registered on
        first sight by stripping the ``toolu_`` prefix.
        """
        if canonical_id not in self._to_provider:
            suffix = canonical_id.removeprefix("toolu_")
            self.register_mapping(f"{self.provider_prefix}{suffix}", canonical_id)
        return self._to_provider[canonical_id]

    def register_mapping(self, provider_id: str, canonical_id: str) -> None:
        """Explicitly register a bidirectional mapping."""
        self._to_canonical[provider_id] = canonical_id
        self._to_provider[canonical_id] = provider_id

    def has_canonical_id(self, canonical_id: str) -> bool:
        return canonical_id in self._to_provider

    def has_provider_id(self, provider_id: str) -> bool:
        return provider_id in self._to_canonical
