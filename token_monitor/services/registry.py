"""Concurrency-safe directory of monitored sessions."""

import logging
import threading
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from ..errors import SessionExistsError, SessionNotFoundError
from ..models.limits import RateLimitConfig, RateLimitStatus
from ..models.session import SessionInfo, SessionState
from ..pricing.provider import PricingProvider
from .rate_limiter import RateLimitTracker
from .tailer import LineSource

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns session state, one rate limit tracker per session and the tailers.

    All state sits behind one lock. Callers always get copies, and no I/O
    happens while the lock is held: tailers are detached under the lock and
    closed after it is released.

    Sessions are cycled in sorted id order.
    """

    def __init__(
        self,
        pricing: Optional[PricingProvider] = None,
        limits: Optional[RateLimitConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.pricing = pricing or PricingProvider()
        self.limits = limits or RateLimitConfig()
        self._clock = clock or datetime.now
        self._lock = threading.Lock()

        self._sessions: Dict[str, SessionState] = {}
        self._trackers: Dict[str, RateLimitTracker] = {}
        self._tailers: Dict[str, LineSource] = {}
        self._active_id: Optional[str] = None

    def add_session(self, info: SessionInfo) -> SessionState:
        """Register a newly discovered session.

        The first session added becomes active.

        Raises:
            SessionExistsError: A session with the same id is registered.
        """
        with self._lock:
            if info.session_id in self._sessions:
                raise SessionExistsError(info.session_id)

            state = SessionState.from_info(info)
            state.last_update = self._clock()
            self._sessions[info.session_id] = state
            self._trackers[info.session_id] = RateLimitTracker(self.limits, clock=self._clock)
            if self._active_id is None:
                self._active_id = info.session_id
            return state.model_copy()

    def remove_session(self, session_id: str) -> None:
        """Forget a session and close its tailer.

        If the session was active another one, if any, becomes active.

        Raises:
            SessionNotFoundError: No such session.
        """
        with self._lock:
            if session_id not in self._sessions:
                raise SessionNotFoundError(session_id)

            del self._sessions[session_id]
            self._trackers.pop(session_id, None)
            tailer = self._tailers.pop(session_id, None)

            if self._active_id == session_id:
                remaining = sorted(self._sessions)
                self._active_id = remaining[0] if remaining else None

        if tailer is not None:
            tailer.close()

    def update_tokens(
        self,
        session_id: str,
        input_tokens: int,
        output_tokens: int,
        cache_tokens: int,
        cost: Decimal,
        model: Optional[str] = None,
        cache_creation_tokens: int = 0,
    ) -> SessionState:
        """Fold one message's token delta into the session's running totals.

        ``cost`` is the priced delta of the same message and is accumulated.

        Raises:
            SessionNotFoundError: No such session.
        """
        with self._lock:
            state = self._sessions.get(session_id)
            if state is None:
                raise SessionNotFoundError(session_id)

            state.input_tokens += input_tokens
            state.output_tokens += output_tokens
            state.cache_tokens += cache_tokens
            state.cache_creation_tokens += cache_creation_tokens
            state.total_tokens = state.input_tokens + state.output_tokens
            state.cost += Decimal(cost)
            state.message_count += 1
            if model:
                state.model = model
            state.context_pct = self.pricing.context_percentage(
                state.model, state.total_tokens
            )
            state.last_update = self._clock()
            state.is_active = True

            tracker = self._trackers[session_id]
            tracker.record_request()
            tracker.record_token_usage(input_tokens + output_tokens)
            state.rate_limit = tracker.status()

            return state.model_copy()

    def get_session(self, session_id: str) -> SessionState:
        """Raises SessionNotFoundError for unknown ids."""
        with self._lock:
            state = self._sessions.get(session_id)
            if state is None:
                raise SessionNotFoundError(session_id)
            return state.model_copy()

    def get_all_sessions(self) -> Dict[str, SessionState]:
        with self._lock:
            return {sid: state.model_copy() for sid, state in self._sessions.items()}

    def session_ids(self) -> List[str]:
        """Session ids in cycling order."""
        with self._lock:
            return sorted(self._sessions)

    def get_active_session(self) -> Optional[SessionState]:
        with self._lock:
            if self._active_id is None:
                return None
            return self._sessions[self._active_id].model_copy()

    @property
    def active_id(self) -> Optional[str]:
        with self._lock:
            return self._active_id

    def set_active_session(self, session_id: str) -> None:
        """Raises SessionNotFoundError for unknown ids."""
        with self._lock:
            if session_id not in self._sessions:
                raise SessionNotFoundError(session_id)
            self._active_id = session_id

    def _step(self, delta: int) -> Optional[SessionState]:
        with self._lock:
            ids = sorted(self._sessions)
            if not ids:
                return None

            if self._active_id in self._sessions:
                index = (ids.index(self._active_id) + delta) % len(ids)
            else:
                index = 0 if delta > 0 else len(ids) - 1
            self._active_id = ids[index]
            return self._sessions[self._active_id].model_copy()

    def next_session(self) -> Optional[SessionState]:
        """Make the following session active, wrapping around."""
        return self._step(1)

    def previous_session(self) -> Optional[SessionState]:
        """Make the preceding session active, wrapping around."""
        return self._step(-1)

    def set_tailer(self, session_id: str, tailer: LineSource) -> None:
        """Attach a tailer to a session, closing any it replaces.

        Raises:
            SessionNotFoundError: No such session.
        """
        with self._lock:
            if session_id not in self._sessions:
                raise SessionNotFoundError(session_id)
            previous = self._tailers.get(session_id)
            self._tailers[session_id] = tailer

        if previous is not None and previous is not tailer:
            previous.close()

    def get_tailer(self, session_id: str) -> Optional[LineSource]:
        with self._lock:
            return self._tailers.get(session_id)

    def mark_inactive(self, session_id: str) -> None:
        """Flag a session whose tailer has stopped."""
        with self._lock:
            state = self._sessions.get(session_id)
            if state is not None:
                state.is_active = False

    def rate_limit_status(self, session_id: str) -> RateLimitStatus:
        """Fresh rate limit status for a session.

        Raises:
            SessionNotFoundError: No such session.
        """
        with self._lock:
            tracker = self._trackers.get(session_id)
            if tracker is None:
                raise SessionNotFoundError(session_id)
            status = tracker.status()
            self._sessions[session_id].rate_limit = status
            return status

    def close_all(self) -> None:
        """Close every tailer. Sessions stay registered."""
        with self._lock:
            tailers = list(self._tailers.values())
            self._tailers.clear()

        for tailer in tailers:
            tailer.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions
