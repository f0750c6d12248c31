"""Session data models for Token Monitor."""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, computed_field

from .limits import RateLimitStatus


class TokenStats(BaseModel):
    """Token delta carried by a single assistant message."""

    input: int = Field(default=0, ge=0)
    output: int = Field(default=0, ge=0)
    cache_read: int = Field(default=0, ge=0)
    cache_creation: int = Field(
        default=0, ge=0, description="Cache creation tokens (tracked, not billed)"
    )

    @computed_field
    @property
    def total(self) -> int:
        """Total tokens; cache tokens are tracked separately."""
        return self.input + self.output


class TranscriptSummary(BaseModel):
    """Token totals parsed from the tail of a transcript."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_tokens: int = 0
    cache_creation_tokens: int = 0
    model: Optional[str] = None
    message_count: int = 0
    session_start: Optional[datetime] = None
    session_end: Optional[datetime] = None

    @computed_field
    @property
    def total_tokens(self) -> int:
        """Input plus output tokens."""
        return self.input_tokens + self.output_tokens

    @computed_field
    @property
    def duration_seconds(self) -> Optional[float]:
        """Seconds between the first and last timestamped entries."""
        if self.session_start and self.session_end:
            return (self.session_end - self.session_start).total_seconds()
        return None


class SessionInfo(BaseModel):
    """Identity of a discovered transcript file."""

    session_id: str
    file_path: Path
    project: str
    last_modified: datetime
    size: int = 0

    model_config = ConfigDict(frozen=True)

    @computed_field
    @property
    def file_name(self) -> str:
        """Get the file name."""
        return self.file_path.name


class SessionState(BaseModel):
    """Aggregated live state for one monitored session."""

    session_id: str
    file_path: Path
    project: str
    model: Optional[str] = None

    input_tokens: int = 0
    output_tokens: int = 0
    cache_tokens: int = 0
    cache_creation_tokens: int = 0
    total_tokens: int = 0

    cost: Decimal = Field(default=Decimal("0"))
    context_pct: float = 0.0
    is_active: bool = True
    last_update: datetime = Field(default_factory=datetime.now)
    message_count: int = 0

    rate_limit: RateLimitStatus = Field(default_factory=RateLimitStatus)

    @classmethod
    def from_info(cls, info: SessionInfo) -> "SessionState":
        """Create a fresh state for a newly registered session."""
        return cls(
            session_id=info.session_id,
            file_path=info.file_path,
            project=info.project,
        )
