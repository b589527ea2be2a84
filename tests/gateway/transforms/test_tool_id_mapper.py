"""Tests for ToolIDMapper."""

from claude_proxy.gateway.transforms.tool_id_mapper import ToolIDMapper


class TestToolIDMapper:
    """Tests for bidirectional tool ID mapping."""

    def test_to_canonical_id_creates_mapping(self):
        """to_canonical_id should create a new mapping."""
        mapper = ToolIDMapper()

        canonical_id = mapper.to_canonical_id("call_abc123")

        assert canonical_id.startswith("toolu_")
        # Should be able to map back
        assert mapper.to_provider_id(canonical_id) == "call_abc123"

    def test_to_canonical_id_reuses_mapping(self):
        """Same provider ID should always return the same canonical ID."""
        mapper = ToolIDMapper()

        assert mapper.to_canonical_id("call_abc") == mapper.to_canonical_id("call_abc")

    def test_multiple_ids_are_unique(self):
        mapper = ToolIDMapper()

        ids = {mapper.to_canonical_id(f"call_{i}") for i in range(3)}

        assert len(ids) == 3

    def test_unknown_canonical_id_registered_on_first_sight(self):
        """IDs carried over from earlier turns get a prefixed provider ID."""
        mapper = ToolIDMapper()

        provider_id = mapper.to_provider_id("toolu_xyz789")

        assert provider_id == "call_xyz789"
        assert mapper.has_provider_id("call_xyz789")
        assert mapper.to_canonical_id("call_xyz789") == "toolu_xyz789"

    def test_custom_prefix(self):
        mapper = ToolIDMapper(provider_prefix="gemini_")

        assert mapper.to_provider_id("toolu_1") == "gemini_1"

    def test_register_mapping(self):
        mapper = ToolIDMapper()

        mapper.register_mapping("call_a", "toolu_a")

        assert mapper.has_canonical_id("toolu_a")
        assert mapper.to_provider_id("toolu_a") == "call_a"
        assert mapper.to_canonical_id("call_a") == "toolu_a"

    def test_mappers_are_independent(self):
        """Each request gets its own mapper."""
        first = ToolIDMapper()
        second = ToolIDMapper()

        first.to_canonical_id("call_shared")

        assert not second.has_provider_id("call_shared")
