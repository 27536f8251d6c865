"""
Alert formatting, deduplication and best-effort delivery.

Delivery never blocks or breaks ingestion: sink failures are logged and
discarded, and asynchronous sinks run in the background.
"""

import asyncio
import concurrent.futures
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from cache_rate_monitor.config.loader import ALERT_COOLDOWN_MS

logger = logging.getLogger(__name__)


class AlertLevel(Enum):
    """Severity understood by the notice sink."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    """Message handed to a notice sink."""
    level: AlertLevel
    title: str
    body: str

    def to_dict(self) -> Dict[str, str]:
        return {"level": self.level.value, "title": self.title, "body": self.body}


def now_ms() -> int:
    return int(time.time() * 1000)


class AlertDispatcher:
    """Sends notices to a sink, at most once per kind per cooldown.

    The sink is any object with ``send(notice)`` returning a bool or an
    awaitable of a bool. Awaitables are never awaited by the caller: on a
    running event loop they become a task, otherwise they run on a single
    background delivery thread owned by the dispatcher.
    """

    def __init__(self, sink, cooldown_ms: int = ALERT_COOLDOWN_MS, clock: Optional[Callable[[], int]] = None):
        self.sink = sink
        self.cooldown_ms = cooldown_ms
        self.clock = clock or now_ms
        self.last_fired: Dict[str, int] = {}
        self.sent_count = 0
        self._pending: Set["asyncio.Task[None]"] = set()
        self._futures: Set["concurrent.futures.Future[None]"] = set()
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None

    def send(self, kind: str, level: AlertLevel, title: str, body: str) -> bool:
        """Deliver an alert unless the same kind fired within the cooldown.

        Returns:
            True if the alert was handed to the sink, False if suppressed
        """
        fired_at = self.clock()
        last = self.last_fired.get(kind)
        if last is not None and fired_at - last < self.cooldown_ms:
            logger.debug("Suppressing duplicate %s alert", kind)
            return False
        self.last_fired[kind] = fired_at
        self._deliver(Notice(level, title, body))
        return True

    def send_critical(self, title: str, body: str) -> None:
        """Deliver an error-level notice, bypassing deduplication."""
        self._deliver(Notice(AlertLevel.ERROR, title, body))

    def _deliver(self, notice: Notice) -> None:
        logger.log(
            logging.ERROR if notice.level == AlertLevel.ERROR else logging.WARNING,
            "Cache anomaly alert: %s - %s", notice.title, notice.body,
        )
        self.sent_count += 1
        try:
            result = self.sink.send(notice)
        except Exception as e:
            logger.warning("Notice sink failed for %r: %s", notice.title, e)
            return

        if not inspect.isawaitable(result):
            self._record_result(notice, result)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            future = self._background().submit(asyncio.run, self._await_delivery(notice, result))
            self._futures.add(future)
            future.add_done_callback(self._futures.discard)
            return

        task = loop.create_task(self._await_delivery(notice, result))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _background(self) -> concurrent.futures.ThreadPoolExecutor:
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix="notice-delivery",
            )
        return self._executor

    async def _await_delivery(self, notice: Notice, result: Awaitable[Any]) -> None:
        try:
            delivered = await result
        except Exception as e:
            logger.warning("Notice sink failed for %r: %s", notice.title, e)
            return
        self._record_result(notice, delivered)

    @staticmethod
    def _record_result(notice: Notice, delivered: Any) -> None:
        if delivered is False:
            logger.info("Notice sink rejected %r", notice.title)

    @property
    def pending(self) -> int:
        return len(self._pending) + sum(1 for future in list(self._futures) if not future.done())

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Block until background deliveries finish.

        Only for callers outside an event loop, such as a CLI about to exit.

        Returns:
            True if nothing is left pending on the delivery thread
        """
        futures = list(self._futures)
        if not futures:
            return True
        _, not_done = concurrent.futures.wait(futures, timeout=timeout)
        return not not_done

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._pending or self._futures:
            waiting = list(self._pending) + [asyncio.wrap_future(f) for f in list(self._futures)]
            await asyncio.gather(*waiting)

    def close(self) -> None:
        """Finish background deliveries and stop the delivery thread."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
