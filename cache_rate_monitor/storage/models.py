"""
Data models for the monitor.

Defines correlation entries, per-request samples and the token totals kept
by the ring buffer.
"""

from dataclasses import dataclass, fields
from typing import Optional


@dataclass(frozen=True)
class PendingStart:
    """A request that has started but not yet finished.

    Owned by the correlation buffer and keyed by trace id.
    """
    trace_id: str
    cli_key: str
    model: str
    started_at_ms: int


@dataclass(frozen=True)
class CompletedSample:
    """Token figures of one successful, attributable request."""
    effective_input_tokens: int
    cache_creation_tokens: int
    cache_read_tokens: int
    provider_id: int
    cli_key: str
    model: str
    minute_index: int

    @property
    def denom_tokens(self) -> int:
        """Denominator of the hit rate: effective input + creation + read."""
        return self.effective_input_tokens + self.cache_creation_tokens + self.cache_read_tokens


@dataclass
class TokenTotals:
    """Summed token counts over some set of samples."""
    denom_tokens: int = 0
    read_tokens: int = 0
    create_tokens: int = 0
    sample_count: int = 0

    def add(self, other: "TokenTotals") -> None:
        self.denom_tokens += other.denom_tokens
        self.read_tokens += other.read_tokens
        self.create_tokens += other.create_tokens
        self.sample_count += other.sample_count

    def subtract(self, other: "TokenTotals") -> None:
        self.denom_tokens -= other.denom_tokens
        self.read_tokens -= other.read_tokens
        self.create_tokens -= other.create_tokens
        self.sample_count -= other.sample_count

    def add_sample(self, sample: CompletedSample) -> None:
        self.denom_tokens += sample.denom_tokens
        self.read_tokens += sample.cache_read_tokens
        self.create_tokens += sample.cache_creation_tokens
        self.sample_count += 1

    def clear(self) -> None:
        self.denom_tokens = 0
        self.read_tokens = 0
        self.create_tokens = 0
        self.sample_count = 0

    def copy(self) -> "TokenTotals":
        return TokenTotals(
            denom_tokens=self.denom_tokens,
            read_tokens=self.read_tokens,
            create_tokens=self.create_tokens,
            sample_count=self.sample_count,
        )

    def mismatched_fields(self, other: "TokenTotals") -> list:
        """Names of the total fields that differ from ``other``."""
        return [
            f.name for f in fields(TokenTotals)
            if getattr(self, f.name) != getattr(other, f.name)
        ]

    @property
    def hit_rate(self) -> float:
        """Cache read tokens as a share of the denominator."""
        if self.denom_tokens <= 0:
            return 0.0
        return self.read_tokens / self.denom_tokens

    @property
    def create_share(self) -> float:
        """Cache creation tokens as a share of the denominator."""
        if self.denom_tokens <= 0:
            return 0.0
        return self.create_tokens / self.denom_tokens

    @property
    def create_read_ratio(self) -> float:
        return self.create_tokens / max(self.read_tokens, 1)


@dataclass
class MinuteBucket(TokenTotals):
    """One ring buffer slot; ``tagged_minute`` is None until first written."""
    tagged_minute: Optional[int] = None

    def reset(self, minute: Optional[int] = None) -> None:
        self.clear()
        self.tagged_minute = minute


@dataclass
class RunningTotals(TokenTotals):
    """Incrementally maintained sum of every bucket in the ring."""
