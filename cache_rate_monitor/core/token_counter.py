"""
Token counting and usage tracking.

Normalizes the token figures reported by each CLI backend.
"""

import math
from dataclasses import dataclass
from typing import Any, Mapping

# Backends whose raw input figure already includes the cache-read tokens
CACHE_READ_INCLUSIVE_BACKENDS = frozenset({"codex", "gemini"})


def coerce_token_count(value: Any) -> int:
    """Turn an untrusted token field into a non-negative integer.

    Anything that is not a finite, positive number (strings, None, bools,
    NaN, infinities, negatives) counts as zero. Fractions are truncated.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value) or value <= 0:
        return 0
    return int(value)


def effective_input_tokens(cli_key: str, input_tokens: int, cache_read_tokens: int) -> int:
    """Input tokens with cache reads removed where the backend double-counts them."""
    if cli_key in CACHE_READ_INCLUSIVE_BACKENDS:
        return max(input_tokens - cache_read_tokens, 0)
    return input_tokens


@dataclass(frozen=True)
class TokenUsage:
    """Token usage of one finished request, already normalized."""
    effective_input_tokens: int
    cache_creation_tokens: int
    cache_read_tokens: int

    @property
    def denom_tokens(self) -> int:
        """Hit-rate denominator (effective input + creation + read)."""
        return self.effective_input_tokens + self.cache_creation_tokens + self.cache_read_tokens


def extract_token_usage(cli_key: str, payload: Mapping[str, Any]) -> TokenUsage:
    """Read the token fields of a finish event.

    Some backends only report the split creation counters (5 minute and
    1 hour TTL caches), so those are summed when the combined field is 0.
    """
    input_tokens = coerce_token_count(payload.get("input_tokens"))
    read_tokens = coerce_token_count(payload.get("cache_read_input_tokens"))
    create_tokens = coerce_token_count(payload.get("cache_creation_input_tokens"))
    if create_tokens == 0:
        create_tokens = (
            coerce_token_count(payload.get("cache_creation_5m_input_tokens"))
            + coerce_token_count(payload.get("cache_creation_1h_input_tokens"))
        )

    return TokenUsage(
        effective_input_tokens=effective_input_tokens(cli_key, input_tokens, read_tokens),
        cache_creation_tokens=create_tokens,
        cache_read_tokens=read_tokens,
    )
