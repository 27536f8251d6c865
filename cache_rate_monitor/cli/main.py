"""
CLI interface for the cache rate monitor.

Toggles the persisted enabled flag and replays recorded gateway events.
"""

import json
import sys
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import typer
import yaml
from rich.console import Console
from rich.table import Table

from cache_rate_monitor.config.loader import MonitorConfig, load_monitor_config
from cache_rate_monitor.core.enablement import DisableReason, EnablementStore
from cache_rate_monitor.sdk.monitor import CacheRateMonitor
from cache_rate_monitor.sdk.sinks import ConsoleNoticeSink, WebhookNoticeSink
from cache_rate_monitor.storage.db import DEFAULT_DB_PATH
from cache_rate_monitor.storage.repository import SettingsRepository

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

EVENT_KINDS = ("request_start", "request")
WEBHOOK_FLUSH_TIMEOUT_S = 30.0


class ReplayClock:
    """Clock that follows the timestamps of the replayed events."""

    def __init__(self):
        self.current_ms = 0

    def __call__(self) -> int:
        return self.current_ms


def _read_events(path: Path) -> Iterator[Tuple[int, str, int, dict]]:
    """Yield (line number, kind, at_ms, payload) from a JSON Lines file.

    Raises:
        ValueError: On a malformed line
    """
    with open(path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"line {line_no}: invalid JSON ({e.msg})")
            if not isinstance(record, dict):
                raise ValueError(f"line {line_no}: expected an object")
            kind = record.get('kind')
            if kind not in EVENT_KINDS:
                raise ValueError(f"line {line_no}: 'kind' must be one of {list(EVENT_KINDS)}")
            at_ms = record.get('at_ms')
            if isinstance(at_ms, bool) or not isinstance(at_ms, int):
                raise ValueError(f"line {line_no}: 'at_ms' must be an integer")
            payload = record.get('payload')
            if not isinstance(payload, dict):
                raise ValueError(f"line {line_no}: 'payload' must be an object")
            yield line_no, kind, at_ms, payload


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Cache rate monitor CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Cache rate monitor - Use --help to see available commands")


@app.command()
def status(db: str = typer.Option(DEFAULT_DB_PATH, "--db", "-d", help="Settings database path")):
    """Show whether the monitor is enabled."""
    store = EnablementStore(SettingsRepository(db))
    if store.get_enabled():
        console.print("[green]✓[/] Cache rate monitor is enabled")
    else:
        console.print("[yellow]-[/] Cache rate monitor is disabled")


@app.command()
def enable(db: str = typer.Option(DEFAULT_DB_PATH, "--db", "-d", help="Settings database path")):
    """Enable the monitor."""
    EnablementStore(SettingsRepository(db)).set_enabled(True)
    console.print("[green]✓[/] Cache rate monitor enabled")


@app.command()
def disable(db: str = typer.Option(DEFAULT_DB_PATH, "--db", "-d", help="Settings database path")):
    """Disable the monitor."""
    EnablementStore(SettingsRepository(db)).set_enabled(False)
    console.print("[green]✓[/] Cache rate monitor disabled")


@app.command()
def replay(
    events: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON Lines event file"),
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", "-d", help="Settings database path"),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML file overriding thresholds and window sizes"
    ),
    webhook_url: Optional[str] = typer.Option(
        None,
        "--webhook-url",
        "-w",
        help="Post alerts to this URL instead of printing them"
    ),
):
    """
    Replay recorded gateway events through the monitor.

    Each line is {"kind": "request_start" | "request", "at_ms": <epoch ms>,
    "payload": {...}}. The monitor's clock follows at_ms, so a recorded hour
    replays in moments. The monitor must be enabled (see `enable`).
    """
    try:
        monitor_config = load_monitor_config(str(config)) if config else MonitorConfig()
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid config:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    try:
        records = list(_read_events(events))
    except ValueError as e:
        console.print(f"[red]Error:[/] {events}: {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    # The replay starts "now" at the first event, so cold start covers its first minutes
    clock = ReplayClock()
    if records:
        clock.current_ms = records[0][2]
    sink = WebhookNoticeSink(webhook_url) if webhook_url else ConsoleNoticeSink(console)
    monitor = CacheRateMonitor(sink, monitor_config, SettingsRepository(db), clock)

    if not monitor.get_enabled():
        console.print("[yellow]Monitor is disabled.[/] Run `cache-rate-monitor enable` first.")
        sys.exit(EXIT_CODE_PASS)

    for _, kind, at_ms, payload in records:
        clock.current_ms = at_ms
        if kind == "request_start":
            monitor.ingest_request_start(payload)
        else:
            monitor.ingest_request(payload)

    if not monitor.flush(timeout=WEBHOOK_FLUSH_TIMEOUT_S):
        console.print("[yellow]Some alerts were still being delivered when the replay ended[/]")
    monitor.close()

    snapshot = monitor.snapshot()
    _display_snapshot(snapshot, len(records))

    if snapshot.disabled_reason == DisableReason.INTEGRITY_VIOLATION:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


def _format_percent(value: float) -> str:
    return f"{value * 100:,.1f}%"


def _display_snapshot(snapshot, replayed: int) -> None:
    """Display the window totals after a replay."""
    console.print("\n[bold]Cache Rate Window[/bold]")

    table = Table()
    table.add_column("Metric")
    table.add_column("Value", justify="right")

    totals = snapshot.totals
    rows: List[Tuple[str, str]] = [
        ("Events replayed", f"{replayed:,}"),
        ("Samples in window", f"{totals.sample_count:,}"),
        ("Denominator tokens", f"{totals.denom_tokens:,}"),
        ("Cache read tokens", f"{totals.read_tokens:,}"),
        ("Cache creation tokens", f"{totals.create_tokens:,}"),
        ("Hit rate", _format_percent(totals.hit_rate)),
        ("Creation share", _format_percent(totals.create_share)),
        ("Unmatched starts", f"{snapshot.pending_starts:,}"),
        ("Alerts sent", f"{snapshot.alerts_sent:,}"),
    ]
    for metric, value in rows:
        table.add_row(metric, value)
    console.print(table)

    if snapshot.series:
        series_table = Table(title="Per provider and model")
        series_table.add_column("Provider", justify="right")
        series_table.add_column("Model")
        series_table.add_column("Samples", justify="right")
        series_table.add_column("Hit rate", justify="right")
        series_table.add_column("Creation share", justify="right")
        for key, series_totals in sorted(snapshot.series.items(), key=lambda item: (item[0].provider_id, item[0].model)):
            series_table.add_row(
                str(key.provider_id),
                key.model,
                f"{series_totals.sample_count:,}",
                _format_percent(series_totals.hit_rate),
                _format_percent(series_totals.create_share),
            )
        console.print(series_table)

    if snapshot.enabled:
        console.print("[green]✓[/] Monitor still enabled")
    else:
        reason = snapshot.disabled_reason.value if snapshot.disabled_reason else "unknown"
        console.print(f"[red]Monitor disabled[/] ({reason})")


if __name__ == "__main__":
    app()
