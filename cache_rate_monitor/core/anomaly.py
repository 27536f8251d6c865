"""
Anomaly detection for cache behaviour.

Identifies caches that are written but not reused, and sudden drops of the
cache hit rate, separately for every provider and model.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from cache_rate_monitor.config.loader import MINUTE_MS, ThresholdConfig, WindowConfig

from .alerts import AlertDispatcher, AlertLevel
from .baseline import BaselineState, WindowSplit, classify, split_window
from .enablement import DisableReason, EnablementStore
from .ring_buffer import SeriesAggregator, SeriesKey

logger = logging.getLogger(__name__)

INTEGRITY_ALERT_TITLE = "Cache anomaly monitor disabled"


class AnomalyKind(Enum):
    """Kinds of cache anomaly; each is deduplicated separately."""
    CREATION_WITHOUT_READ = "creation-without-read"
    HIGH_CREATE_SHARE = "high-create-share"
    CREATE_READ_IMBALANCE = "create-read-imbalance"
    HIT_RATE_DROP = "hit-rate-drop"


@dataclass(frozen=True)
class CacheAnomaly:
    """Detected anomaly with details and explanation."""
    kind: AnomalyKind
    level: AlertLevel
    observed_value: float
    threshold: float
    title: str
    message: str
    series: Optional[SeriesKey] = None

    @property
    def dedup_key(self) -> str:
        """Alert kind plus provider and model, so each series cools down on its own."""
        if self.series is None:
            return self.kind.value
        return f"{self.kind.value}:{self.series.provider_id}:{self.series.model}"


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def detect_cache_anomalies(
    split: WindowSplit,
    thresholds: ThresholdConfig,
    cold_start: bool = False,
    series: Optional[SeriesKey] = None,
) -> List[CacheAnomaly]:
    """Detect anomalies in the current window of one provider and model.

    Rules:
    - Creation rules (recent window, at most one of them, in this order):
      - creation-without-read: cache created but nothing read
      - high-create-share: creation share of the denominator >= create_share_min
      - create-read-imbalance: creation / max(read, 1) >= create_read_imbalance_min
    - hit-rate-drop: recent hit rate fell against the baseline by at least
      drop_abs_min and drop_ratio_min of the baseline rate

    Args:
        split: Recent and baseline sub-windows
        thresholds: Rule thresholds
        cold_start: Whether the split was classified with the cold-start floors
        series: Provider and model the window belongs to, named in the alert

    Returns:
        List of detected anomalies (empty if none)
    """
    anomalies = []
    recent = split.recent.totals
    phase = " (cold start)" if cold_start else ""
    where = f" ({series})" if series is not None else ""
    prefix = f"{series}: " if series is not None else ""

    if split.recent.is_warm and recent.create_tokens > 0:
        if recent.read_tokens <= thresholds.no_read_tokens_max:
            anomalies.append(CacheAnomaly(
                kind=AnomalyKind.CREATION_WITHOUT_READ,
                level=AlertLevel.WARNING,
                observed_value=recent.read_tokens,
                threshold=thresholds.no_read_tokens_max,
                title=f"Cache created but never read{where}",
                message=(
                    f"{prefix}{recent.create_tokens:,} cache creation tokens and {recent.read_tokens:,} "
                    f"read tokens over {recent.sample_count} requests{phase}"
                ),
                series=series,
            ))
        elif recent.create_share >= thresholds.create_share_min:
            anomalies.append(CacheAnomaly(
                kind=AnomalyKind.HIGH_CREATE_SHARE,
                level=AlertLevel.WARNING,
                observed_value=recent.create_share,
                threshold=thresholds.create_share_min,
                title=f"Cache creation share too high{where}",
                message=(
                    f"{prefix}Creation is {_pct(recent.create_share)} of tokens "
                    f"(threshold {_pct(thresholds.create_share_min)}) "
                    f"over {recent.sample_count} requests{phase}"
                ),
                series=series,
            ))
        elif recent.create_read_ratio >= thresholds.create_read_imbalance_min:
            anomalies.append(CacheAnomaly(
                kind=AnomalyKind.CREATE_READ_IMBALANCE,
                level=AlertLevel.WARNING,
                observed_value=recent.create_read_ratio,
                threshold=thresholds.create_read_imbalance_min,
                title=f"Cache creation outpaces reads{where}",
                message=(
                    f"{prefix}Created {recent.create_tokens:,} vs read {recent.read_tokens:,} tokens "
                    f"(ratio {recent.create_read_ratio:.1f}, threshold "
                    f"{thresholds.create_read_imbalance_min:g}){phase}"
                ),
                series=series,
            ))

    # The drop rule always needs the full recent floors, also in cold start
    recent_state = classify(recent, thresholds.recent_denom_tokens_min, thresholds.recent_samples_min)
    baseline = split.baseline.totals
    if recent_state == BaselineState.WARM and split.baseline.is_warm:
        baseline_rate = baseline.hit_rate
        recent_rate = recent.hit_rate
        drop = baseline_rate - recent_rate
        if (
            baseline_rate > 0
            and baseline_rate >= thresholds.baseline_hit_rate_min
            and drop >= thresholds.drop_abs_min
            and drop / baseline_rate >= thresholds.drop_ratio_min
        ):
            anomalies.append(CacheAnomaly(
                kind=AnomalyKind.HIT_RATE_DROP,
                level=AlertLevel.WARNING,
                observed_value=recent_rate,
                threshold=baseline_rate * (1 - thresholds.drop_ratio_min),
                title=f"Cache hit rate dropped{where}",
                message=(
                    f"{prefix}Hit rate {_pct(recent_rate)} in the last "
                    f"{split.recent.last_minute - split.recent.first_minute + 1} minutes "
                    f"vs {_pct(baseline_rate)} before"
                ),
                series=series,
            ))

    return anomalies


class AnomalyEvaluator:
    """Runs the self-check and the rules at most once per interval.

    There is no timer: ``maybe_evaluate`` is called after every ingested
    sample and returns immediately until the interval has elapsed.
    """

    def __init__(
        self,
        aggregator: SeriesAggregator,
        dispatcher: AlertDispatcher,
        enablement: EnablementStore,
        window: Optional[WindowConfig] = None,
        thresholds: Optional[ThresholdConfig] = None,
    ):
        self.aggregator = aggregator
        self.dispatcher = dispatcher
        self.enablement = enablement
        self.window = window or WindowConfig()
        self.thresholds = thresholds or ThresholdConfig()
        self.last_eval_ms: Optional[int] = None
        self.cold_start_until_ms: Optional[int] = None

    def begin_cold_start(self, now_ms: int) -> None:
        self.cold_start_until_ms = now_ms + self.window.cold_start_minutes * MINUTE_MS

    def in_cold_start(self, now_ms: int) -> bool:
        return self.cold_start_until_ms is not None and now_ms < self.cold_start_until_ms

    def maybe_evaluate(self, now_ms: int) -> List[CacheAnomaly]:
        """Evaluate every series if the evaluation interval has elapsed.

        Returns:
            Anomalies found in this run (empty if gated, clean or corrupt)
        """
        if self.last_eval_ms is not None and now_ms - self.last_eval_ms < self.window.eval_interval_ms:
            return []
        self.last_eval_ms = now_ms

        now_minute = now_ms // MINUTE_MS
        if not self.check_integrity(now_minute):
            return []
        self.aggregator.prune_idle()

        cold_start = self.in_cold_start(now_ms)
        anomalies = []
        for key, ring in self.aggregator.items():
            split = split_window(ring, now_minute, self.window, self.thresholds, cold_start=cold_start)
            for anomaly in detect_cache_anomalies(split, self.thresholds, cold_start=cold_start, series=key):
                self.dispatcher.send(anomaly.dedup_key, anomaly.level, anomaly.title, anomaly.message)
                anomalies.append(anomaly)
        return anomalies

    def check_integrity(self, now_minute: int) -> bool:
        """Run the self-check of every ring; on failure disable the monitor.

        Each ring is first rolled forward to ``now_minute``, then its running
        totals are compared with the buckets inside the window. The critical
        alert is sent once, on the Enabled -> Disabled transition, and is not
        subject to deduplication.
        """
        self.aggregator.advance(now_minute)
        failures = []
        for key, ring in self.aggregator.items():
            report = ring.verify(now_minute)
            if report.ok:
                continue
            logger.error(
                "Ring buffer totals for %s diverged from bucket sums in %s: running=%s recomputed=%s",
                key, ", ".join(report.mismatched_fields), report.running, report.recomputed,
            )
            failures.append((key, report))
        if not failures:
            return True

        if self.enablement.force_disable(DisableReason.INTEGRITY_VIOLATION):
            fields = sorted({name for _, report in failures for name in report.mismatched_fields})
            affected = "; ".join(str(key) for key, _ in failures)
            self.dispatcher.send_critical(
                INTEGRITY_ALERT_TITLE,
                f"Window totals no longer match the per-minute buckets ({', '.join(fields)}) "
                f"for {affected}, most likely after a system clock jump. The monitor turned "
                "itself off; re-enable it to start over.",
            )
        return False
