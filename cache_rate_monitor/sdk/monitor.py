"""
Cache rate monitor handle.

Owns every piece of monitor state and exposes the entry points a host
application calls from its event stream.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from ..config.loader import MonitorConfig
from ..core.alerts import AlertDispatcher, now_ms
from ..core.anomaly import AnomalyEvaluator
from ..core.correlation import CorrelationBuffer
from ..core.enablement import DisableReason, EnablementStore
from ..core.ring_buffer import SeriesAggregator, SeriesKey
from ..storage.models import TokenTotals

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitorSnapshot:
    """Point-in-time view of the monitor for display."""
    enabled: bool
    disabled_reason: Optional[DisableReason]
    totals: TokenTotals
    series: Dict[SeriesKey, TokenTotals]
    pending_starts: int
    last_eval_ms: Optional[int]
    in_cold_start: bool
    alerts_sent: int


class CacheRateMonitor:
    """Cache-rate anomaly monitor bound to one host application.

    Every public method is total: when the monitor is disabled ingestion is
    a no-op, and an unexpected error inside ingestion is logged, never
    raised to the host.
    """

    def __init__(
        self,
        sink,
        config: Optional[MonitorConfig] = None,
        settings=None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """Initialize the monitor.

        Args:
            sink: Notice sink with ``send(notice)``, sync or async
            config: Monitor configuration (defaults if omitted)
            settings: Store for the enabled flag, normally a SettingsRepository;
                None keeps the flag in memory only, starting disabled
            clock: Returns the current time in epoch milliseconds
        """
        self.config = config or MonitorConfig()
        self.clock = clock or now_ms

        self.enablement = EnablementStore(settings)
        self.correlation = CorrelationBuffer(self.config.correlation)
        self.aggregator = SeriesAggregator(self.config.window.window_minutes)
        self.dispatcher = AlertDispatcher(sink, self.config.alerts.cooldown_ms, self.clock)
        self.evaluator = AnomalyEvaluator(
            self.aggregator,
            self.dispatcher,
            self.enablement,
            self.config.window,
            self.config.thresholds,
        )

        self._reset_on_enable = False
        self.enablement.subscribe(self._on_enabled_changed)
        if self.enablement.get_enabled():
            self.evaluator.begin_cold_start(self.clock())

    def _on_enabled_changed(self, enabled: bool) -> None:
        if not enabled:
            self._reset_on_enable = self.enablement.disabled_reason == DisableReason.INTEGRITY_VIOLATION
            return
        if self._reset_on_enable:
            # Rings that failed the self-check cannot be trusted again
            self.aggregator.reset()
            self._reset_on_enable = False
        self.evaluator.begin_cold_start(self.clock())

    def get_enabled(self) -> bool:
        return self.enablement.get_enabled()

    def set_enabled(self, enabled: bool) -> None:
        self.enablement.set_enabled(enabled)

    def subscribe(self, subscriber: Callable[[bool], None]) -> Callable[[], None]:
        """Observe the enabled flag; returns an unsubscribe function."""
        return self.enablement.subscribe(subscriber)

    def ingest_request_start(self, payload: Mapping[str, Any]) -> None:
        """Feed a ``request_start`` gateway event."""
        if not self.enablement.get_enabled() or not isinstance(payload, Mapping):
            return
        try:
            self.correlation.ingest_request_start(payload, self.clock())
        except Exception:
            logger.exception("Failed to ingest request_start event")

    def ingest_request(self, payload: Mapping[str, Any]) -> None:
        """Feed a finished ``request`` gateway event."""
        if not self.enablement.get_enabled() or not isinstance(payload, Mapping):
            return
        try:
            current = self.clock()
            sample = self.correlation.ingest_request(payload, current)
            if sample is None:
                return
            self.aggregator.ingest(sample, current)
            self.evaluator.maybe_evaluate(current)
        except Exception:
            logger.exception("Failed to ingest request event")

    def snapshot(self) -> MonitorSnapshot:
        return MonitorSnapshot(
            enabled=self.enablement.get_enabled(),
            disabled_reason=self.enablement.disabled_reason,
            totals=self.aggregator.totals,
            series={key: ring.totals.copy() for key, ring in self.aggregator.items()},
            pending_starts=len(self.correlation),
            last_eval_ms=self.evaluator.last_eval_ms,
            in_cold_start=self.evaluator.in_cold_start(self.clock()),
            alerts_sent=self.dispatcher.sent_count,
        )

    async def drain(self) -> None:
        """Wait for every alert delivery still in flight."""
        await self.dispatcher.drain()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Block until background alert deliveries finish; see AlertDispatcher.flush."""
        return self.dispatcher.flush(timeout)

    def close(self) -> None:
        self.dispatcher.close()
