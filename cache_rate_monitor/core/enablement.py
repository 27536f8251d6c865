"""
Persisted on/off switch of the monitor.

The flag gates every ingestion call. It is flipped by the user, or forced off
when the aggregator fails its integrity self-check.
"""

import logging
from enum import Enum
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

ENABLED_SETTING_KEY = "cache_rate_monitor.enabled"

_TRUE_VALUES = {"1", "true"}


class DisableReason(Enum):
    """Why the monitor is currently off."""
    USER = "user"
    INTEGRITY_VIOLATION = "integrity_violation"


Subscriber = Callable[[bool], None]


class EnablementStore:
    """Boolean flag persisted to a settings store, with observers.

    ``settings`` is any object with ``get(key) -> Optional[str]`` and
    ``set(key, value)``, normally a SettingsRepository. It may be None for a
    purely in-memory flag. Storage failures never escape this class: a failed
    read means disabled, a failed write keeps the in-memory value.
    """

    def __init__(self, settings=None, key: str = ENABLED_SETTING_KEY):
        self._settings = settings
        self._key = key
        self._subscribers: List[Subscriber] = []
        self._enabled = self._load()
        self.disabled_reason: Optional[DisableReason] = None if self._enabled else DisableReason.USER

    def _load(self) -> bool:
        if self._settings is None:
            return False
        try:
            raw = self._settings.get(self._key)
        except Exception:
            logger.warning("Could not read %s, treating monitor as disabled", self._key, exc_info=True)
            return False
        if not isinstance(raw, str):
            return False
        return raw.strip().lower() in _TRUE_VALUES

    def _persist(self, enabled: bool) -> None:
        if self._settings is None:
            return
        try:
            self._settings.set(self._key, "true" if enabled else "false")
        except Exception:
            logger.warning("Could not persist %s=%s", self._key, enabled, exc_info=True)

    def get_enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        """Flip the flag; a no-op when the value is unchanged."""
        self._transition(bool(enabled), DisableReason.USER)

    def force_disable(self, reason: DisableReason) -> bool:
        """Move to Disabled(reason).

        Returns:
            True if the monitor was enabled and is now off, False if it was
            already off (nothing is persisted or notified in that case)
        """
        return self._transition(False, reason)

    def _transition(self, enabled: bool, reason: DisableReason) -> bool:
        if enabled == self._enabled:
            return False
        self._enabled = enabled
        self.disabled_reason = None if enabled else reason
        self._persist(enabled)
        logger.info(
            "Cache rate monitor %s%s",
            "enabled" if enabled else "disabled",
            "" if enabled else f" ({reason.value})",
        )
        self._notify(enabled)
        return True

    def _notify(self, enabled: bool) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(enabled)
            except Exception:
                logger.exception("Enabled-flag subscriber %r failed", subscriber)

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register ``subscriber(enabled)``; returns a function that removes it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe
