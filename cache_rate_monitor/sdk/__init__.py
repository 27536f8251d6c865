"""
SDK for the cache rate monitor.

Provides the monitor handle a host application embeds, and notice sinks.
"""

from .monitor import CacheRateMonitor, MonitorSnapshot
from .sinks import ConsoleNoticeSink, WebhookNoticeSink

__all__ = ["CacheRateMonitor", "MonitorSnapshot", "ConsoleNoticeSink", "WebhookNoticeSink"]
