"""Tests for the sliding-window rate limit tracker."""

from datetime import datetime, timedelta

import pytest

from token_monitor.models.limits import RateLimitConfig, RateLimitStatus
from token_monitor.services.rate_limiter import (
    RateLimitTracker,
    format_rate_limit_summary,
)

START = datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture
def clock(fake_clock):
    return fake_clock(START)


@pytest.fixture
def tracker(clock):
    return RateLimitTracker(RateLimitConfig(), clock=clock)


class TestRecording:
    """Tests for request and token recording."""

    def test_defaults(self, tracker):
        status = tracker.status()

        assert status.requests_limit == 120
        assert status.tokens_limit == 100_000
        assert status.requests_remaining == 120
        assert status.tokens_remaining == 100_000
        assert not status.is_limited
        assert status.status_level == "ok"

    def test_requests_reach_limit(self, tracker):
        for _ in range(120):
            tracker.record_request()

        status = tracker.status()
        assert status.requests_remaining == 0
        assert status.is_limited
        assert status.status_level == "critical"

    def test_remaining_never_negative(self, tracker):
        for _ in range(130):
            tracker.record_request()
        tracker.record_token_usage(150_000)

        status = tracker.status()
        assert status.requests_remaining == 0
        assert status.tokens_remaining == 0

    def test_tokens_reach_limit(self, tracker):
        tracker.record_token_usage(60_000)
        assert tracker.status().status_level == "warning"

        tracker.record_token_usage(40_000)
        status = tracker.status()
        assert status.tokens_remaining == 0
        assert status.is_limited

    def test_negative_tokens_rejected(self, tracker):
        with pytest.raises(ValueError):
            tracker.record_token_usage(-1)


class TestSlidingWindow:
    """Tests for window pruning."""

    def test_entries_expire(self, tracker, clock):
        for _ in range(10):
            tracker.record_request()
        tracker.record_token_usage(5000)

        clock.advance(timedelta(seconds=30))
        tracker.record_request()
        assert tracker.request_count() == 11

        clock.advance(timedelta(seconds=31))
        assert tracker.request_count() == 1
        assert tracker.token_count() == 0
        assert tracker.status().requests_remaining == 119

    def test_entry_exactly_window_old_is_dropped(self, tracker, clock):
        tracker.record_request()
        clock.advance(timedelta(seconds=60))
        assert tracker.request_count() == 0

    def test_custom_window(self, clock):
        tracker = RateLimitTracker(
            RateLimitConfig(requests_per_minute=5, window_seconds=10), clock=clock
        )
        for _ in range(5):
            tracker.record_request()
        assert tracker.status().is_limited

        clock.advance(timedelta(seconds=11))
        assert not tracker.status().is_limited

    def test_reset(self, tracker):
        tracker.record_request()
        tracker.record_token_usage(10)
        tracker.reset()

        assert tracker.request_count() == 0
        assert tracker.token_count() == 0


class TestUpdateLimits:
    """Tests for externally observed limits."""

    def test_overrides_limits(self, tracker):
        tracker.update_limits(40, 50, 9000, 10_000)

        status = tracker.status()
        assert status.requests_limit == 50
        assert status.tokens_limit == 10_000
        assert status.requests_remaining == 40
        assert status.tokens_remaining == 9000

    def test_computed_remaining_can_be_lower(self, tracker):
        tracker.update_limits(40, 50, 9000, 10_000)
        for _ in range(20):
            tracker.record_request()

        assert tracker.status().requests_remaining == 30

    def test_unexpired_reset_preserved(self, tracker, clock):
        original = tracker.status().requests_reset
        clock.advance(timedelta(seconds=10))

        tracker.update_limits(100, 120, 90_000, 100_000)

        assert tracker.status().requests_reset == original

    def test_expired_reset_extended(self, tracker, clock):
        clock.advance(timedelta(seconds=90))

        tracker.update_limits(100, 120, 90_000, 100_000)

        status = tracker.status()
        assert status.requests_reset == clock.now + timedelta(seconds=60)
        assert status.tokens_reset == clock.now + timedelta(seconds=60)

    def test_observed_remaining_ends_at_reset(self, tracker, clock):
        tracker.update_limits(0, 120, 100_000, 100_000)
        assert tracker.status().is_limited

        clock.advance(timedelta(seconds=61))
        status = tracker.status()
        assert status.requests_remaining == 120
        assert not status.is_limited


class TestRateLimitStatus:
    """Tests for derived status fields."""

    def test_usage_and_level(self):
        status = RateLimitStatus(
            requests_remaining=60,
            requests_limit=120,
            tokens_remaining=10_000,
            tokens_limit=100_000,
        )
        assert status.request_usage == 50.0
        assert status.token_usage == 90.0
        assert status.status_level == "critical"

    def test_zero_limits(self):
        status = RateLimitStatus()
        assert status.request_usage == 0.0
        assert status.status_level == "ok"

    def test_time_until_reset(self):
        status = RateLimitStatus(
            requests_reset=START + timedelta(seconds=30),
            tokens_reset=START + timedelta(seconds=10),
        )
        assert status.time_until_reset(START) == timedelta(seconds=10)
        assert status.time_until_reset(START + timedelta(minutes=5)) == timedelta(0)

    def test_summary(self):
        status = RateLimitStatus(requests_remaining=60, requests_limit=120)
        assert format_rate_limit_summary(status) == "[50% req, 0% tokens, warning]"
        assert format_rate_limit_summary(None) == "Rate limit: unknown"
