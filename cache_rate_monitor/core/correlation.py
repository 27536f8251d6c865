"""
Start/finish correlation of gateway request events.

A request is announced by a ``request_start`` event carrying the requested
model, and completed by a ``request`` event carrying token usage and the
provider attempts. Only a finish that matches a recorded start (same trace id
and CLI) becomes a sample; everything else cannot be attributed and is
dropped.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from cache_rate_monitor.config.loader import MINUTE_MS, CorrelationConfig
from cache_rate_monitor.storage.models import CompletedSample, PendingStart

from .token_counter import extract_token_usage

logger = logging.getLogger(__name__)

UNKNOWN_MODEL = "unknown"


def normalize_model(value: Any, max_length: int) -> str:
    """Blank or missing model names become a sentinel; long ones are capped."""
    if not isinstance(value, str) or not value.strip():
        return UNKNOWN_MODEL
    return value.strip()[:max_length]


def is_non_caching_model(model: str, keywords) -> bool:
    lowered = model.lower()
    return any(keyword in lowered for keyword in keywords)


def is_successful(payload: Mapping[str, Any]) -> bool:
    """A finish counts only with a 2xx status and no error code."""
    status = payload.get("status")
    if isinstance(status, bool) or not isinstance(status, int):
        return False
    if not 200 <= status < 300:
        return False
    return not payload.get("error_code")


def pick_final_provider(attempts: Any) -> Optional[int]:
    """Provider id of the last attempt that names a valid provider."""
    if not isinstance(attempts, (list, tuple)):
        return None
    for attempt in reversed(attempts):
        if not isinstance(attempt, Mapping):
            continue
        provider_id = attempt.get("provider_id")
        if isinstance(provider_id, bool) or not isinstance(provider_id, int):
            continue
        if provider_id > 0:
            return provider_id
    return None


def _trace_id(payload: Mapping[str, Any]) -> Optional[str]:
    trace_id = payload.get("trace_id")
    if not isinstance(trace_id, str) or not trace_id:
        return None
    return trace_id


class CorrelationBuffer:
    """Pending request starts keyed by trace id.

    Expired starts are swept lazily on each new start, so the buffer needs
    no background timer.
    """

    def __init__(self, config: Optional[CorrelationConfig] = None):
        self.config = config or CorrelationConfig()
        self._pending: Dict[str, PendingStart] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, trace_id: str) -> bool:
        return trace_id in self._pending

    def ingest_request_start(self, payload: Mapping[str, Any], now_ms: int) -> None:
        """Record a request start."""
        trace_id = _trace_id(payload)
        if trace_id is None:
            logger.debug("Dropping request_start without trace id")
            return
        cli_key = payload.get("cli_key")
        if cli_key not in self.config.supported_cli_keys:
            logger.debug("Dropping request_start %s for unsupported cli %r", trace_id, cli_key)
            return

        model = normalize_model(payload.get("requested_model"), self.config.model_name_max_length)
        self.prune_expired(now_ms)
        self._pending[trace_id] = PendingStart(
            trace_id=trace_id,
            cli_key=cli_key,
            model=model,
            started_at_ms=now_ms,
        )

    def prune_expired(self, now_ms: int) -> int:
        """Evict starts older than the TTL. Returns how many were evicted."""
        ttl = self.config.pending_ttl_ms
        expired = [
            trace_id for trace_id, pending in self._pending.items()
            if now_ms - pending.started_at_ms > ttl
        ]
        for trace_id in expired:
            del self._pending[trace_id]
        if expired:
            logger.debug("Evicted %d unmatched request starts", len(expired))
        return len(expired)

    def ingest_request(self, payload: Mapping[str, Any], now_ms: int) -> Optional[CompletedSample]:
        """Match a finish event to its start and extract a sample.

        Returns:
            The completed sample, or None when the event is dropped
        """
        trace_id = _trace_id(payload)
        if trace_id is None:
            return None
        pending = self._pending.get(trace_id)
        if pending is None:
            logger.debug("Dropping request %s: no matching start", trace_id)
            return None
        if payload.get("cli_key") != pending.cli_key:
            logger.debug(
                "Dropping request %s: cli %r does not match start cli %r",
                trace_id, payload.get("cli_key"), pending.cli_key,
            )
            return None

        del self._pending[trace_id]

        if not is_successful(payload):
            return None
        if is_non_caching_model(pending.model, self.config.non_caching_model_keywords):
            return None

        provider_id = pick_final_provider(payload.get("attempts"))
        if provider_id is None:
            logger.debug("Dropping request %s: no attributable provider", trace_id)
            return None

        usage = extract_token_usage(pending.cli_key, payload)
        if usage.denom_tokens <= 0:
            return None

        return CompletedSample(
            effective_input_tokens=usage.effective_input_tokens,
            cache_creation_tokens=usage.cache_creation_tokens,
            cache_read_tokens=usage.cache_read_tokens,
            provider_id=provider_id,
            cli_key=pending.cli_key,
            model=pending.model,
            minute_index=now_ms // MINUTE_MS,
        )
