"""
Recent and baseline sub-windows of the ring buffer.

The last few minutes of the window (recent) are compared against the
remainder of the window (baseline). Both are recomputed from the buckets on
every evaluation.
"""

from dataclasses import dataclass
from enum import Enum

from cache_rate_monitor.config.loader import ThresholdConfig, WindowConfig
from cache_rate_monitor.storage.models import TokenTotals

from .ring_buffer import RingBufferAggregator


class BaselineState(Enum):
    """Whether a sub-window holds enough traffic to be judged."""
    COLD = "cold"  # Insufficient data for a reliable rate
    WARM = "warm"  # Sufficient data for a reliable rate


@dataclass(frozen=True)
class WindowMetrics:
    """Token sums of one sub-window and whether they are trustworthy."""
    totals: TokenTotals
    state: BaselineState
    first_minute: int
    last_minute: int

    def __post_init__(self):
        """Validate the minute range is logical."""
        if self.first_minute > self.last_minute:
            raise ValueError("first_minute must not be after last_minute")

    @property
    def is_warm(self) -> bool:
        return self.state == BaselineState.WARM


@dataclass(frozen=True)
class WindowSplit:
    """Recent sub-window and the baseline that precedes it."""
    recent: WindowMetrics
    baseline: WindowMetrics


def classify(totals: TokenTotals, denom_tokens_min: int, samples_min: int) -> BaselineState:
    """WARM when both the token and the request floors are met."""
    if totals.denom_tokens >= denom_tokens_min and totals.sample_count >= samples_min:
        return BaselineState.WARM
    return BaselineState.COLD


def split_window(
    aggregator: RingBufferAggregator,
    now_minute: int,
    window: WindowConfig,
    thresholds: ThresholdConfig,
    cold_start: bool = False,
) -> WindowSplit:
    """Compute recent and baseline sums ending at ``now_minute``.

    During cold start the recent window is judged against the lower cold
    floors, so creation anomalies can be reported before a full baseline
    has accumulated.

    Args:
        aggregator: Ring buffer to read the buckets from
        now_minute: Absolute minute of the evaluation
        window: Window shape
        thresholds: Sufficiency floors
        cold_start: Whether the monitor was enabled only recently

    Returns:
        WindowSplit with both sub-windows classified
    """
    recent_first = now_minute - window.recent_minutes + 1
    baseline_last = recent_first - 1
    baseline_first = recent_first - window.baseline_minutes

    recent_totals = aggregator.window_sums(recent_first, now_minute)
    baseline_totals = aggregator.window_sums(baseline_first, baseline_last)

    if cold_start:
        recent_state = classify(
            recent_totals,
            thresholds.cold_recent_denom_tokens_min,
            thresholds.cold_recent_samples_min,
        )
    else:
        recent_state = classify(
            recent_totals,
            thresholds.recent_denom_tokens_min,
            thresholds.recent_samples_min,
        )
    baseline_state = classify(
        baseline_totals,
        thresholds.baseline_denom_tokens_min,
        thresholds.baseline_samples_min,
    )

    return WindowSplit(
        recent=WindowMetrics(recent_totals, recent_state, recent_first, now_minute),
        baseline=WindowMetrics(baseline_totals, baseline_state, baseline_first, baseline_last),
    )
