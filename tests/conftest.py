"""
Shared fixtures: a controllable clock, a recording notice sink and gateway
event builders.
"""

import asyncio
import threading

import pytest

BASE_TIME_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-millisecond clock moved by hand."""

    def __init__(self, now_ms: int = BASE_TIME_MS):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class RecordingSink:
    """Notice sink that remembers what it was sent."""

    def __init__(self, result=True):
        self.result = result
        self.notices = []

    def send(self, notice):
        self.notices.append(notice)
        return self.result


class GatedAsyncSink:
    """Async sink that does not finish until the test opens the gate."""

    def __init__(self):
        self.gate = threading.Event()
        self.notices = []

    async def send(self, notice):
        while not self.gate.is_set():
            await asyncio.sleep(0.01)
        self.notices.append(notice)
        return True


def request_start(trace_id, model="claude-3-opus", cli_key="claude"):
    return {
        "trace_id": trace_id,
        "cli_key": cli_key,
        "method": "POST",
        "path": "/v1/messages",
        "query": None,
        "requested_model": model,
        "ts": 0,
    }


def request_event(trace_id, input=1000, read=100, create=0, cli_key="claude", provider_id=1, **extra):
    event = {
        "trace_id": trace_id,
        "cli_key": cli_key,
        "method": "POST",
        "path": "/v1/messages",
        "query": None,
        "status": 200,
        "error_category": None,
        "error_code": None,
        "duration_ms": 100,
        "attempts": [
            {
                "provider_id": provider_id,
                "provider_name": "P1",
                "base_url": "https://p1",
                "outcome": "success",
                "status": 200,
            }
        ],
        "input_tokens": input,
        "cache_read_input_tokens": read,
        "cache_creation_input_tokens": create,
    }
    event.update(extra)
    return event


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()
