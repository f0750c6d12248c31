"""Update events pushed from the monitor to the presentation layer."""

import queue
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Protocol
from pydantic import BaseModel, Field

from .limits import RateLimitStatus
from .session import SessionState


class MonitorEvent(BaseModel):
    """Base class for all events."""

    created_at: datetime = Field(default_factory=datetime.now)


class SessionFound(MonitorEvent):
    """A session was discovered and registered."""

    session_id: str
    project: str


class TokenUpdate(MonitorEvent):
    """Running token totals changed for a session."""

    session_id: str
    model: str
    input_tokens: int
    output_tokens: int
    cache_tokens: int
    total_tokens: int
    cost: Decimal
    context_pct: float


class ErrorEvent(MonitorEvent):
    """A transient error occurred while watching a session."""

    session_id: Optional[str] = None
    message: str


class WatcherStarted(MonitorEvent):
    """A tailer is running for the session."""

    session_id: str


class WatcherFailed(MonitorEvent):
    """A tailer could not be started for the session."""

    session_id: str
    message: str


class RateLimitUpdate(MonitorEvent):
    """Rate limit status for a session."""

    session_id: str
    status: RateLimitStatus


class SessionListUpdate(MonitorEvent):
    """The set of monitored sessions changed."""

    sessions: Dict[str, SessionState] = Field(default_factory=dict)
    active_id: Optional[str] = None


class SessionSwitch(MonitorEvent):
    """The active session changed."""

    session_id: Optional[str] = None


class HistoryEntry(BaseModel):
    """A previous session shown alongside live data."""

    session_id: str
    timestamp: datetime
    total_tokens: int
    cost: Decimal
    project: str = ""


class HistoryLoaded(MonitorEvent):
    """Recent history was loaded from the store."""

    history: List[HistoryEntry] = Field(default_factory=list)


class EventSink(Protocol):
    """Anything that accepts monitor events."""

    def send(self, event: MonitorEvent) -> None: ...


class QueueSink:
    """Event sink that buffers events on a queue for another thread."""

    def __init__(self) -> None:
        self.events: "queue.Queue[MonitorEvent]" = queue.Queue()

    def send(self, event: MonitorEvent) -> None:
        self.events.put(event)

    def drain(self) -> List[MonitorEvent]:
        """Return and remove every buffered event."""
        drained = []
        while True:
            try:
                drained.append(self.events.get_nowait())
            except queue.Empty:
                return drained
