"""Rate limit models for Token Monitor."""

from datetime import datetime, timedelta
from typing import Optional
from pydantic import BaseModel, Field, computed_field


class RateLimitConfig(BaseModel):
    """Sliding-window rate limit defaults.

    Loaded from ``limits.yaml`` when present; otherwise the Claude API defaults
    apply.
    """

    requests_per_minute: int = Field(
        default=120, ge=1, description="Requests allowed per window"
    )
    tokens_per_minute: int = Field(
        default=100_000, ge=1, description="Tokens allowed per window"
    )
    window_seconds: float = Field(
        default=60.0, gt=0, description="Sliding window duration in seconds"
    )

    @property
    def window(self) -> timedelta:
        """Window duration as a timedelta."""
        return timedelta(seconds=self.window_seconds)


class RateLimitStatus(BaseModel):
    """Point-in-time view of a session's rate limit exposure."""

    requests_remaining: int = 0
    requests_limit: int = 0
    requests_reset: Optional[datetime] = None

    tokens_remaining: int = 0
    tokens_limit: int = 0
    tokens_reset: Optional[datetime] = None

    is_limited: bool = False

    @computed_field
    @property
    def request_usage(self) -> float:
        """Percentage of the request limit used (0-100)."""
        if self.requests_limit == 0:
            return 0.0
        used = self.requests_limit - self.requests_remaining
        return used / self.requests_limit * 100

    @computed_field
    @property
    def token_usage(self) -> float:
        """Percentage of the token limit used (0-100)."""
        if self.tokens_limit == 0:
            return 0.0
        used = self.tokens_limit - self.tokens_remaining
        return used / self.tokens_limit * 100

    @computed_field
    @property
    def status_level(self) -> str:
        """Return "ok", "warning" or "critical" from the higher usage."""
        max_usage = max(self.request_usage, self.token_usage)
        if max_usage >= 80:
            return "critical"
        elif max_usage >= 50:
            return "warning"
        return "ok"

    def time_until_reset(self, now: Optional[datetime] = None) -> timedelta:
        """Time until the earlier of the two reset times."""
        resets = [r for r in (self.requests_reset, self.tokens_reset) if r is not None]
        if not resets:
            return timedelta(0)
        now = now or datetime.now()
        return max(timedelta(0), min(resets) - now)
