"""
Tests for the CLI interface.
"""

import json
import os
import re
import shutil
import tempfile
from unittest.mock import patch

import httpx
from conftest import BASE_TIME_MS, request_event, request_start
from typer.testing import CliRunner

from cache_rate_monitor.cli.main import EXIT_CODE_FAIL, EXIT_CODE_PASS, app
from cache_rate_monitor.sdk.sinks import WebhookNoticeSink

runner = CliRunner()


class TestCLI:
    """Test CLI commands."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "monitor.db")

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_events(self, records, filename="events.jsonl") -> str:
        path = os.path.join(self.temp_dir, filename)
        with open(path, 'w', encoding='utf-8') as f:
            for record in records:
                f.write(record if isinstance(record, str) else json.dumps(record))
                f.write("\n")
        return path

    def _pair(self, trace_id, at_ms, **kwargs):
        return [
            {"kind": "request_start", "at_ms": at_ms, "payload": request_start(trace_id)},
            {"kind": "request", "at_ms": at_ms, "payload": request_event(trace_id, **kwargs)},
        ]

    def test_no_command_prints_hint(self):
        result = runner.invoke(app, [])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_status_defaults_to_disabled(self):
        result = runner.invoke(app, ["status", "--db", self.db_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "disabled" in result.output

    def test_enable_then_disable(self):
        result = runner.invoke(app, ["enable", "--db", self.db_path])
        assert result.exit_code == EXIT_CODE_PASS
        assert "enabled" in runner.invoke(app, ["status", "-d", self.db_path]).output

        result = runner.invoke(app, ["disable", "--db", self.db_path])
        assert result.exit_code == EXIT_CODE_PASS
        assert "disabled" in runner.invoke(app, ["status", "-d", self.db_path]).output

    def test_replay_prints_alert_and_summary(self):
        """Creation without reads is reported once the first minute has passed."""
        records = []
        for i in range(11):
            records += self._pair(f"t-{i}", BASE_TIME_MS, input=400, read=0, create=100)
        records += self._pair("t-last", BASE_TIME_MS + 60_001, input=400, read=0, create=100)
        events = self._write_events(records)
        runner.invoke(app, ["enable", "--db", self.db_path])

        result = runner.invoke(app, ["replay", events, "--db", self.db_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Cache created but never read" in result.output
        assert "Cache Rate Window" in result.output
        assert "Samples in window" in result.output
        assert "Monitor still enabled" in result.output

    def test_replay_when_disabled(self):
        events = self._write_events(self._pair("t-1", BASE_TIME_MS))

        result = runner.invoke(app, ["replay", events, "--db", self.db_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Monitor is disabled" in result.output

    def test_replay_invalid_json(self):
        events = self._write_events(self._pair("t-1", BASE_TIME_MS) + ["{not json"])
        runner.invoke(app, ["enable", "--db", self.db_path])

        result = runner.invoke(app, ["replay", events, "--db", self.db_path])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "line 3" in result.output

    def test_replay_unknown_kind(self):
        events = self._write_events([{"kind": "response", "at_ms": 1, "payload": {}}])

        result = runner.invoke(app, ["replay", events, "--db", self.db_path])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "'kind' must be one of" in result.output

    def test_replay_invalid_config(self):
        events = self._write_events(self._pair("t-1", BASE_TIME_MS))
        config_path = os.path.join(self.temp_dir, "config.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("thresholds:\n  no_such_threshold: 1\n")

        result = runner.invoke(app, ["replay", events, "--db", self.db_path, "--config", config_path])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid config" in result.output

    def test_replay_missing_file(self):
        result = runner.invoke(app, ["replay", os.path.join(self.temp_dir, "missing.jsonl")])

        assert result.exit_code != EXIT_CODE_PASS

    def test_replay_with_webhook_counts_alerts(self):
        """Alerts posted to a webhook still show up in the summary."""
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        transport = httpx.MockTransport(handler)
        records = []
        for i in range(11):
            records += self._pair(f"t-{i}", BASE_TIME_MS, input=400, read=0, create=100)
        records += self._pair("t-last", BASE_TIME_MS + 60_001, input=400, read=0, create=100)
        events = self._write_events(records)
        runner.invoke(app, ["enable", "--db", self.db_path])

        with patch(
            "cache_rate_monitor.cli.main.WebhookNoticeSink",
            side_effect=lambda url: WebhookNoticeSink(url, transport=transport),
        ):
            result = runner.invoke(
                app, ["replay", events, "--db", self.db_path, "--webhook-url", "https://hooks.example/alerts"],
            )

        assert result.exit_code == EXIT_CODE_PASS
        assert [body["title"] for body in bodies] == ["Cache created but never read (provider 1 / claude-3-opus)"]
        assert re.search(r"Alerts sent\W+(\d+)", result.output).group(1) == "1"

    def test_replay_clock_jump_back_fails(self):
        records = []
        for at_ms in (1_800_000, -1_800_000, 1_860_001):
            records += self._pair(f"t-{at_ms}", at_ms)
        events = self._write_events(records)
        runner.invoke(app, ["enable", "--db", self.db_path])

        result = runner.invoke(app, ["replay", events, "--db", self.db_path])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Cache anomaly monitor disabled" in result.output
        assert "Monitor disabled" in result.output

    def test_replay_shows_each_provider(self):
        records = self._pair("t-1", BASE_TIME_MS, provider_id=1) + self._pair("t-2", BASE_TIME_MS, provider_id=7)
        events = self._write_events(records)
        runner.invoke(app, ["enable", "--db", self.db_path])

        result = runner.invoke(app, ["replay", events, "--db", self.db_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Per provider and model" in result.output
        assert re.search(r"7\W+claude-3-opus", result.output)
