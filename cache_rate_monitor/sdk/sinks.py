"""
Notice sinks.

Deliver monitor alerts to an operator: printed to a terminal, or posted to
a webhook.
"""

import logging
from typing import Optional

import httpx
from rich.console import Console

from ..core.alerts import AlertLevel, Notice

logger = logging.getLogger(__name__)

_LEVEL_STYLES = {
    AlertLevel.INFO: "cyan",
    AlertLevel.WARNING: "yellow",
    AlertLevel.ERROR: "bold red",
}


class ConsoleNoticeSink:
    """Prints notices with rich and keeps them for later inspection."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self.sent = []

    def send(self, notice: Notice) -> bool:
        style = _LEVEL_STYLES[notice.level]
        self.console.print(f"[{style}]{notice.level.value.upper()}[/] [bold]{notice.title}[/]: {notice.body}")
        self.sent.append(notice)
        return True


class WebhookNoticeSink:
    """Posts notices as JSON to a webhook URL.

    Each call opens its own client so the sink can be driven from any event
    loop, including the one on the dispatcher's background delivery thread.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the webhook sink.

        Args:
            url: Endpoint receiving ``{"level", "title", "body"}``
            timeout: Request timeout in seconds
            transport: Optional httpx transport, mainly for tests

        Raises:
            ValueError: If url is empty
        """
        if not url or not url.strip():
            raise ValueError("url is required and cannot be empty")
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def send(self, notice: Notice) -> bool:
        """Post one notice.

        Returns:
            True on a 2xx response, False otherwise

        Raises:
            httpx.HTTPError: On connection failures; the dispatcher logs them
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(self.url, json=notice.to_dict())
        if not response.is_success:
            logger.warning("Webhook %s answered %s", self.url, response.status_code)
            return False
        return True
