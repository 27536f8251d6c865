"""
Per-minute token sums over a fixed window.

Each absolute minute maps to one of ``width`` slots. As time moves forward the
ring rolls: slots whose minute has left the window are subtracted from the
running totals and cleared, so ``totals`` equals the sum of the buckets inside
the window. ``verify`` checks that claim by recomputing the in-window sum
from scratch. A clock that jumps backwards breaks the claim, and ``verify``
reports it.

Samples are kept apart per provider and model, one ring each.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from cache_rate_monitor.config.loader import MINUTE_MS, WINDOW_MINUTES
from cache_rate_monitor.storage.models import CompletedSample, MinuteBucket, RunningTotals, TokenTotals


def normalize_mod(value: int, modulus: int) -> int:
    """Remainder that is never negative, also for negative minutes."""
    return ((value % modulus) + modulus) % modulus


@dataclass(frozen=True)
class IntegrityReport:
    """Result of comparing the running totals with a full recomputation."""
    running: TokenTotals
    recomputed: TokenTotals
    mismatched_fields: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatched_fields


class RingBufferAggregator:
    """Ring of minute buckets with O(1) running totals."""

    def __init__(self, width: int = WINDOW_MINUTES):
        if width <= 0:
            raise ValueError("width must be > 0")
        self.width = width
        self.buckets: List[MinuteBucket] = [MinuteBucket() for _ in range(width)]
        self.totals = RunningTotals()
        self.current_minute: Optional[int] = None

    def reset(self) -> None:
        """Drop every bucket and the running totals."""
        for bucket in self.buckets:
            bucket.reset()
        self.totals.clear()
        self.current_minute = None

    def advance(self, now_minute: int) -> None:
        """Roll the ring forward to ``now_minute``, expiring old buckets.

        Only forward moves do anything; an earlier minute leaves the ring as
        it is.
        """
        if self.current_minute is not None and now_minute <= self.current_minute:
            return
        if self.current_minute is not None:
            first = max(self.current_minute + 1, now_minute - self.width + 1)
            for minute in range(first, now_minute + 1):
                bucket = self.buckets[normalize_mod(minute, self.width)]
                if bucket.tagged_minute is not None and bucket.tagged_minute != minute:
                    self.totals.subtract(bucket)
                    bucket.reset()
        self.current_minute = now_minute

    def ingest(self, sample: CompletedSample, now_ms: int) -> MinuteBucket:
        """Fold one sample into the bucket of the current minute."""
        absolute_minute = now_ms // MINUTE_MS
        self.advance(absolute_minute)
        bucket = self.buckets[normalize_mod(absolute_minute, self.width)]
        if bucket.tagged_minute != absolute_minute:
            self.totals.subtract(bucket)
            bucket.reset(absolute_minute)
        bucket.add_sample(sample)
        self.totals.add_sample(sample)
        return bucket

    def recompute_totals(self, now_minute: Optional[int] = None) -> TokenTotals:
        """Sum the buckets, limited to the window ending at ``now_minute`` if given."""
        if now_minute is None:
            recomputed = TokenTotals()
            for bucket in self.buckets:
                recomputed.add(bucket)
            return recomputed
        return self.window_sums(now_minute - self.width + 1, now_minute)

    def verify(self, now_minute: Optional[int] = None) -> IntegrityReport:
        """Compare the running totals with the sum of the window's buckets.

        Args:
            now_minute: Absolute minute the window ends at. Buckets tagged
                outside the window (left behind by a clock jump) then count
                as a mismatch. Without it every bucket is summed.
        """
        running = self.totals.copy()
        recomputed = self.recompute_totals(now_minute)
        return IntegrityReport(
            running=running,
            recomputed=recomputed,
            mismatched_fields=running.mismatched_fields(recomputed),
        )

    def window_sums(self, first_minute: int, last_minute: int) -> TokenTotals:
        """Sum of the buckets tagged with a minute in [first_minute, last_minute]."""
        sums = TokenTotals()
        for bucket in self.buckets:
            if bucket.tagged_minute is not None and first_minute <= bucket.tagged_minute <= last_minute:
                sums.add(bucket)
        return sums


@dataclass(frozen=True)
class SeriesKey:
    """Provider and model a ring of buckets belongs to."""
    provider_id: int
    model: str

    @classmethod
    def of(cls, sample: CompletedSample) -> "SeriesKey":
        return cls(sample.provider_id, sample.model)

    def __str__(self) -> str:
        return f"provider {self.provider_id} / {self.model}"


class SeriesAggregator:
    """One ring buffer per (provider, model), created on its first sample.

    A provider with a healthy cache never hides another provider's anomaly.
    Rings with nothing left in the window are dropped by ``prune_idle``.
    """

    def __init__(self, width: int = WINDOW_MINUTES):
        if width <= 0:
            raise ValueError("width must be > 0")
        self.width = width
        self.rings: Dict[SeriesKey, RingBufferAggregator] = {}

    def __len__(self) -> int:
        return len(self.rings)

    def items(self) -> Iterator[Tuple[SeriesKey, RingBufferAggregator]]:
        return iter(list(self.rings.items()))

    def ring(self, key: SeriesKey) -> Optional[RingBufferAggregator]:
        return self.rings.get(key)

    def ingest(self, sample: CompletedSample, now_ms: int) -> RingBufferAggregator:
        """Fold a sample into the ring of its provider and model."""
        key = SeriesKey.of(sample)
        ring = self.rings.get(key)
        if ring is None:
            ring = RingBufferAggregator(self.width)
            self.rings[key] = ring
        ring.ingest(sample, now_ms)
        return ring

    def advance(self, now_minute: int) -> None:
        for ring in self.rings.values():
            ring.advance(now_minute)

    def prune_idle(self) -> int:
        """Drop rings whose window is empty. Returns how many were dropped."""
        idle = [key for key, ring in self.rings.items() if ring.totals.sample_count <= 0]
        for key in idle:
            del self.rings[key]
        return len(idle)

    def reset(self) -> None:
        self.rings.clear()

    @property
    def totals(self) -> TokenTotals:
        """Running totals summed over every series."""
        combined = TokenTotals()
        for ring in self.rings.values():
            combined.add(ring.totals)
        return combined
