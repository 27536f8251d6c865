"""
Unit tests for token normalization.
"""

import math

import pytest

from cache_rate_monitor.core.token_counter import (
    TokenUsage,
    coerce_token_count,
    effective_input_tokens,
    extract_token_usage,
)


class TestCoerceTokenCount:
    """Test defensive coercion of token fields."""

    @pytest.mark.parametrize("value", [None, "foo", "12", -1, -0.5, 0, True, False, math.nan, math.inf, [], {}])
    def test_invalid_values_become_zero(self, value):
        assert coerce_token_count(value) == 0

    def test_valid_values(self):
        assert coerce_token_count(1200) == 1200
        assert coerce_token_count(12.9) == 12
        assert isinstance(coerce_token_count(12.9), int)


class TestEffectiveInput:
    """Test per-backend effective input correction."""

    def test_claude_input_is_unchanged(self):
        assert effective_input_tokens("claude", 100, 200) == 100

    @pytest.mark.parametrize("cli_key", ["codex", "gemini"])
    def test_cache_read_is_removed(self, cli_key):
        assert effective_input_tokens(cli_key, 1000, 300) == 700

    def test_never_negative(self):
        assert effective_input_tokens("codex", 100, 200) == 0


class TestExtractTokenUsage:
    """Test reading token usage from a finish event."""

    def test_codex_event(self):
        usage = extract_token_usage("codex", {
            "input_tokens": 100,
            "cache_read_input_tokens": 200,
            "cache_creation_input_tokens": 1,
        })

        assert usage == TokenUsage(effective_input_tokens=0, cache_creation_tokens=1, cache_read_tokens=200)
        assert usage.denom_tokens == 201

    def test_split_creation_fields_fallback(self):
        """The 5m/1h creation counters are used when the combined field is 0."""
        usage = extract_token_usage("claude", {
            "input_tokens": 10,
            "cache_read_input_tokens": 0,
            "cache_creation_input_tokens": 0,
            "cache_creation_5m_input_tokens": 3,
            "cache_creation_1h_input_tokens": 4,
        })

        assert usage.cache_creation_tokens == 7

    def test_combined_creation_wins(self):
        usage = extract_token_usage("claude", {
            "cache_creation_input_tokens": 5,
            "cache_creation_5m_input_tokens": 3,
            "cache_creation_1h_input_tokens": 4,
        })

        assert usage.cache_creation_tokens == 5

    def test_garbage_fields(self):
        usage = extract_token_usage("claude", {
            "input_tokens": "foo",
            "cache_read_input_tokens": -1,
            "cache_creation_input_tokens": 1,
        })

        assert usage == TokenUsage(effective_input_tokens=0, cache_creation_tokens=1, cache_read_tokens=0)
