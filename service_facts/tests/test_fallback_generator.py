"""
Unit tests for the FallbackGenerator.
"""

import json

import pytest

from service_facts.app.generation.fallback import FallbackGenerator
from shared.errors import GenerationError
from shared.test_helpers import FakeClock, FakeTextGenerator


GOOD_JSON = json.dumps({
    "fact": "Venus is the only planet in the solar system that spins clockwise.",
    "category": "space",
    "source_context": "Planetary science",
    "tags": ["Venus", "rotation"],
})


class TestFallbackGenerator:
    """Test cases for FallbackGenerator."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    def _generator(self, responses, clock, **kwargs):
        client = FakeTextGenerator(responses, delay=kwargs.pop("delay", 0.0))
        return FallbackGenerator(client, clock=clock, **kwargs), client

    @pytest.mark.asyncio
    async def test_generate_parses_json(self, clock):
        """Test JSON output becomes an unverified generated fact."""
        generator, client = self._generator([GOOD_JSON], clock)

        fact = await generator.generate("space")

        assert fact.text.startswith("Venus")
        assert fact.category == "space"
        assert fact.generated is True
        assert fact.verified is False
        assert fact.source == "Planetary science"
        assert fact.tags == ["venus", "rotation"]
        assert fact.model == "xai/grok-3"
        assert client.call_count == 1

    @pytest.mark.asyncio
    async def test_generate_accepts_plain_text(self, clock):
        """Test non-JSON output is used as the fact text."""
        generator, _ = self._generator(["  Sloths can hold their breath for forty minutes.  "], clock)

        fact = await generator.generate("animals")

        assert fact.text == "Sloths can hold their breath for forty minutes."
        assert fact.tags == ["animals"]
        assert fact.source == "AI Generated"

    @pytest.mark.parametrize("tags,expected", [
        ("Planets", ["planets"]),
        ({"name": "planets"}, ["space"]),
        (None, ["space"]),
        (["", "  "], ["space"]),
    ])
    def test_parse_response_tag_shapes(self, clock, tags, expected):
        """Test tags that are not a list of strings do not split into characters."""
        generator = FallbackGenerator(FakeTextGenerator(), clock=clock)
        raw = json.dumps({"fact": "Venus is the only planet that spins clockwise.", "tags": tags})

        fact = generator.parse_response(raw, "space")

        assert fact.tags == expected

    def test_prompt_is_scoped_to_category(self):
        """Test the prompt names the category."""
        generator = FallbackGenerator(FakeTextGenerator())

        prompt = generator.build_prompt("history")

        assert prompt[0]["role"] == "system"
        assert "Category focus: history" in prompt[0]["content"]
        assert prompt[1]["content"] == "Generate an interesting fact in the history category"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["", "   ", "Too short", json.dumps({"fact": ""}), "x" * 1001])
    async def test_rejects_unusable_output(self, clock, raw):
        """Test empty or out-of-range output is rejected."""
        generator, _ = self._generator([raw], clock)

        with pytest.raises(GenerationError):
            await generator.generate("science")

    @pytest.mark.asyncio
    async def test_timeout(self, clock):
        """Test slow generators time out."""
        generator, _ = self._generator([GOOD_JSON], clock, delay=0.5, timeout=0.05)

        with pytest.raises(GenerationError) as exc_info:
            await generator.generate("space")

        assert "timed out" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_client_error_becomes_generation_error(self, clock):
        """Test arbitrary client failures are wrapped."""
        generator, _ = self._generator([RuntimeError("socket closed")], clock)

        with pytest.raises(GenerationError):
            await generator.generate("space")

    @pytest.mark.asyncio
    async def test_moderation_approves(self, clock):
        """Test approved facts pass moderation."""
        verdict = json.dumps({"approved": True, "confidence": 0.9, "issues": []})
        generator, client = self._generator([GOOD_JSON, verdict], clock, moderation_enabled=True)

        fact = await generator.generate("space")

        assert fact.text.startswith("Venus")
        assert client.call_count == 2

    @pytest.mark.asyncio
    async def test_moderation_rejects_low_confidence(self, clock):
        """Test low-confidence approvals are blocked."""
        verdict = json.dumps({"approved": True, "confidence": 0.2})
        generator, _ = self._generator([GOOD_JSON, verdict], clock, moderation_enabled=True)

        with pytest.raises(GenerationError):
            await generator.generate("space")

    @pytest.mark.asyncio
    async def test_moderation_failure_blocks(self, clock):
        """Test unreadable moderation output blocks the fact."""
        generator, _ = self._generator([GOOD_JSON, "I cannot answer that"], clock, moderation_enabled=True)

        with pytest.raises(GenerationError):
            await generator.generate("space")

    @pytest.mark.asyncio
    async def test_moderation_disabled_skips_round_trip(self, clock):
        """Test no moderation call is made when disabled."""
        generator, client = self._generator([GOOD_JSON], clock)

        assert await generator.moderate("anything at all") is True
        assert client.call_count == 0
