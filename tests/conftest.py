"""Shared fixtures for Token Monitor tests."""

import json
import queue
import time
from types import SimpleNamespace

import pytest


def _assistant_line(
    input_tokens=100,
    output_tokens=50,
    cache_read=0,
    cache_creation=0,
    model="claude-sonnet-4-5-20250929",
    timestamp="2026-02-02T18:14:51.091Z",
    session_id="test-session",
):
    return json.dumps(
        {
            "type": "assistant",
            "uuid": "msg-1",
            "sessionId": session_id,
            "timestamp": timestamp,
            "message": {
                "model": model,
                "role": "assistant",
                "usage": {
                    "input_tokens": input_tokens,
                    "output_tokens": output_tokens,
                    "cache_read_input_tokens": cache_read,
                    "cache_creation_input_tokens": cache_creation,
                },
            },
        }
    )


@pytest.fixture
def assistant_line():
    """Factory for assistant transcript lines."""
    return _assistant_line


@pytest.fixture
def user_line():
    return json.dumps(
        {"type": "user", "uuid": "u-1", "message": {"role": "user", "content": "hi"}}
    )


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


@pytest.fixture
def fake_clock():
    return FakeClock


def drain_until_closed(q, closed, timeout=5.0):
    """Collect queue items until ``closed`` arrives."""
    items = []
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            item = q.get(timeout=0.1)
        except queue.Empty:
            continue
        if item is closed:
            return items
        items.append(item)
    raise AssertionError(f"queue not closed within {timeout}s; got {items!r}")


def collect(q, count, timeout=5.0):
    """Collect exactly ``count`` items from a queue."""
    items = []
    deadline = time.monotonic() + timeout
    while len(items) < count and time.monotonic() < deadline:
        try:
            items.append(q.get(timeout=0.1))
        except queue.Empty:
            continue
    return items


def wait_for(predicate, timeout=5.0, interval=0.02):
    """Poll until ``predicate()`` is truthy."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return False


@pytest.fixture
def waiters():
    """Polling helpers for threaded components."""
    return SimpleNamespace(
        drain_until_closed=drain_until_closed, collect=collect, wait_for=wait_for
    )
