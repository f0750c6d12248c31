"""Sliding-window rate limit tracking."""

import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Optional, Tuple

from ..models.limits import RateLimitConfig, RateLimitStatus

Clock = Callable[[], datetime]


def format_rate_limit_summary(status: Optional[RateLimitStatus]) -> str:
    """One-line summary such as ``[12% req, 40% tokens, ok]``."""
    if status is None:
        return "Rate limit: unknown"
    return (
        f"[{status.request_usage:.0f}% req, {status.token_usage:.0f}% tokens, "
        f"{status.status_level}]"
    )


class RateLimitTracker:
    """Counts requests and tokens over a trailing time window.

    Every entry retained after a prune is newer than ``now - window``. Limits
    start at the configured defaults and may be overridden with values
    observed from the API via ``update_limits``.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize the tracker.

        Args:
            config: Default limits and window; built-in defaults if None
            clock: Source of the current time, injectable for tests
        """
        self.config = config or RateLimitConfig()
        self._clock: Clock = clock or datetime.now
        self._lock = threading.Lock()

        self._requests: Deque[datetime] = deque()
        self._tokens: Deque[Tuple[datetime, int]] = deque()

        self._requests_limit = self.config.requests_per_minute
        self._tokens_limit = self.config.tokens_per_minute

        # Remaining values reported by the API, honoured until their reset
        self._observed_requests: Optional[int] = None
        self._observed_tokens: Optional[int] = None

        now = self._clock()
        self._requests_reset: datetime = now + self.config.window
        self._tokens_reset: datetime = now + self.config.window

    @property
    def window(self) -> timedelta:
        return self.config.window

    def _prune(self, now: datetime) -> None:
        window_start = now - self.window
        while self._requests and self._requests[0] <= window_start:
            self._requests.popleft()
        while self._tokens and self._tokens[0][0] <= window_start:
            self._tokens.popleft()

    def record_request(self) -> None:
        """Record one API request at the current time."""
        with self._lock:
            now = self._clock()
            self._requests.append(now)
            self._prune(now)

    def record_token_usage(self, count: int) -> None:
        """Record ``count`` tokens consumed at the current time."""
        if count < 0:
            raise ValueError(f"token count must be non-negative, got {count}")
        with self._lock:
            now = self._clock()
            self._tokens.append((now, count))
            self._prune(now)

    def update_limits(
        self,
        requests_remaining: int,
        requests_limit: int,
        tokens_remaining: int,
        tokens_limit: int,
    ) -> None:
        """Override limits with values observed from the API.

        An existing reset time that has not yet elapsed is kept; otherwise the
        reset moves to one window from now.
        """
        with self._lock:
            now = self._clock()
            self._requests_limit = requests_limit
            self._tokens_limit = tokens_limit
            self._observed_requests = requests_remaining
            self._observed_tokens = tokens_remaining

            window_end = now + self.window
            if self._requests_reset <= now:
                self._requests_reset = window_end
            if self._tokens_reset <= now:
                self._tokens_reset = window_end

    def status(self) -> RateLimitStatus:
        """Current status computed from the window contents."""
        with self._lock:
            now = self._clock()
            self._prune(now)

            if self._observed_requests is not None and self._requests_reset <= now:
                self._observed_requests = None
            if self._observed_tokens is not None and self._tokens_reset <= now:
                self._observed_tokens = None

            request_count = len(self._requests)
            token_count = sum(count for _, count in self._tokens)

            requests_remaining = max(0, self._requests_limit - request_count)
            tokens_remaining = max(0, self._tokens_limit - token_count)
            if self._observed_requests is not None:
                requests_remaining = min(requests_remaining, max(0, self._observed_requests))
            if self._observed_tokens is not None:
                tokens_remaining = min(tokens_remaining, max(0, self._observed_tokens))

            return RateLimitStatus(
                requests_remaining=requests_remaining,
                requests_limit=self._requests_limit,
                requests_reset=self._requests_reset,
                tokens_remaining=tokens_remaining,
                tokens_limit=self._tokens_limit,
                tokens_reset=self._tokens_reset,
                is_limited=requests_remaining <= 0 or tokens_remaining <= 0,
            )

    def reset(self) -> None:
        """Forget all recorded requests and tokens."""
        with self._lock:
            self._requests.clear()
            self._tokens.clear()
            self._observed_requests = None
            self._observed_tokens = None

    def request_count(self) -> int:
        """Requests inside the current window."""
        with self._lock:
            window_start = self._clock() - self.window
            return sum(1 for ts in self._requests if ts > window_start)

    def token_count(self) -> int:
        """Tokens inside the current window."""
        with self._lock:
            window_start = self._clock() - self.window
            return sum(count for ts, count in self._tokens if ts > window_start)
