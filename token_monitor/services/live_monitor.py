"""Live monitoring service for Claude Code sessions.

Ties discovery, the session registry, per-session tailers, the pricing table
and the history store together, and pushes every change to an event sink.
"""

import logging
import queue
import threading
import time
from datetime import timedelta
from typing import Callable, Dict, List, Optional

import duckdb

from ..config import Config
from ..errors import (
    DiscoveryError,
    NoSessionsFoundError,
    SessionExistsError,
    SessionNotFoundError,
    TranscriptParseError,
    WatchSetupError,
)
from ..models.events import (
    ErrorEvent,
    EventSink,
    HistoryEntry,
    HistoryLoaded,
    RateLimitUpdate,
    SessionFound,
    SessionListUpdate,
    SessionSwitch,
    TokenUpdate,
    WatcherFailed,
    WatcherStarted,
)
from ..models.session import SessionInfo, SessionState
from ..pricing.provider import PricingProvider
from ..store.history import HistoryRecord, HistoryStore
from ..utils.file_system import FileSystem, OSFileSystem
from ..utils.transcript import calculate_stats, parse_line
from .discovery import SessionLocator
from .registry import SessionRegistry
from .tailer import CLOSED, LineSource, Tailer

logger = logging.getLogger(__name__)

TailerFactory = Callable[[str], LineSource]

RATE_LIMIT_INTERVAL = 5.0


class LiveMonitor:
    """Watches every discovered session and reports token usage as events."""

    def __init__(
        self,
        sink: EventSink,
        config: Optional[Config] = None,
        fs: Optional[FileSystem] = None,
        pricing: Optional[PricingProvider] = None,
        registry: Optional[SessionRegistry] = None,
        history: Optional[HistoryStore] = None,
        tailer_factory: Optional[TailerFactory] = None,
        rate_limit_interval: float = RATE_LIMIT_INTERVAL,
    ):
        """Initialize live monitor.

        Args:
            sink: Receives every event
            config: Monitor configuration (defaults when None)
            fs: File system for discovery and tailing
            pricing: Pricing table for cost and context percentage
            registry: Session registry; a new one is built when None
            history: Store that receives each session's latest totals
            tailer_factory: Builds a tailer for a transcript path
            rate_limit_interval: Seconds between periodic rate limit updates
        """
        self.sink = sink
        self.config = config or Config()
        self.fs = fs or OSFileSystem()
        self.pricing = pricing or PricingProvider()
        self.registry = registry or SessionRegistry(pricing=self.pricing)
        self.history = history
        self.rate_limit_interval = rate_limit_interval

        monitor_config = self.config.monitor
        self.locator = SessionLocator(
            self.fs,
            extension=monitor_config.transcript_extension,
            agent_marker=monitor_config.agent_marker,
        )
        self._tailer_factory = tailer_factory or self._default_tailer
        self.projects_dir: Optional[str] = None
        self.parse_errors = 0

        self._stopping = threading.Event()
        self._consumers: Dict[str, threading.Thread] = {}
        self._maintenance: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _default_tailer(self, path: str) -> LineSource:
        return Tailer(path, fs=self.fs, poll_interval=self.config.monitor.poll_interval)

    @property
    def active_within(self) -> Optional[timedelta]:
        minutes = self.config.monitor.active_within_minutes
        return timedelta(minutes=minutes) if minutes else None

    # === Lifecycle ===

    def start(self, projects_dir: Optional[str] = None, rediscover: bool = True) -> None:
        """Discover sessions and start watching them.

        Raises:
            NoSessionsFoundError: Nothing to watch.
            DiscoveryError: The projects directory cannot be read.
        """
        self.projects_dir = projects_dir or self.config.paths.projects_dir
        result = self.locator.discover(
            self.projects_dir,
            max_results=self.config.monitor.max_sessions,
            active_within=self.active_within,
        )
        if not result.sessions:
            raise NoSessionsFoundError(self.projects_dir)
        if result.error_count:
            logger.warning("%d project(s) could not be scanned", result.error_count)

        for info in result.sessions:
            self._add_session(info)

        if result.active_id and result.active_id in self.registry:
            self.registry.set_active_session(result.active_id)

        self._send_session_list()
        self._send_history()

        active = self.registry.active_id
        if active:
            self._send_rate_limit(active)

        self._maintenance = threading.Thread(
            target=self._maintenance_loop,
            args=(rediscover,),
            name="monitor-maintenance",
            daemon=True,
        )
        self._maintenance.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Close every tailer and wait for worker threads. Idempotent."""
        if self._stopping.is_set():
            return
        self._stopping.set()
        self.registry.close_all()

        with self._lock:
            threads = list(self._consumers.values())
        if self._maintenance is not None:
            threads.append(self._maintenance)

        for thread in threads:
            if thread is not threading.current_thread():
                thread.join(timeout)

    def __enter__(self) -> "LiveMonitor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    # === Sessions ===

    def _add_session(self, info: SessionInfo) -> bool:
        """Register a session and attach a tailer to it.

        Returns:
            True if the session was registered
        """
        try:
            self.registry.add_session(info)
        except SessionExistsError:
            logger.info(
                "Skipping %s: session id %s already registered",
                info.file_path,
                info.session_id,
            )
            return False

        self.sink.send(SessionFound(session_id=info.session_id, project=info.project))

        try:
            tailer = self._tailer_factory(str(info.file_path))
        except WatchSetupError as e:
            logger.warning("Cannot watch session %s: %s", info.session_id, e)
            self.sink.send(WatcherFailed(session_id=info.session_id, message=str(e)))
            return True

        self.registry.set_tailer(info.session_id, tailer)
        consumer = threading.Thread(
            target=self._consume,
            args=(info.session_id, tailer),
            name=f"consumer:{info.session_id}",
            daemon=True,
        )
        with self._lock:
            self._consumers[info.session_id] = consumer
        consumer.start()

        self.sink.send(WatcherStarted(session_id=info.session_id))
        return True

    def rediscover(self) -> List[str]:
        """Pick up sessions started since the last scan.

        Returns:
            Ids of newly added sessions
        """
        if self.projects_dir is None:
            return []

        room = self.config.monitor.max_sessions - len(self.registry)
        if room <= 0:
            return []

        try:
            found = self.locator.new_sessions(
                self.projects_dir,
                self.registry.session_ids(),
                active_within=self.active_within,
            )
        except DiscoveryError as e:
            logger.warning("Rediscovery failed: %s", e)
            self.sink.send(ErrorEvent(message=str(e)))
            return []

        added = []
        for info in found[:room]:
            if self._add_session(info):
                added.append(info.session_id)

        if added:
            logger.info("Found %d new session(s)", len(added))
            self._send_session_list()
        return added

    def next_session(self) -> Optional[SessionState]:
        state = self.registry.next_session()
        self._send_switch(state)
        return state

    def previous_session(self) -> Optional[SessionState]:
        state = self.registry.previous_session()
        self._send_switch(state)
        return state

    def _send_switch(self, state: Optional[SessionState]) -> None:
        self.sink.send(SessionSwitch(session_id=state.session_id if state else None))
        if state is not None:
            self._send_rate_limit(state.session_id)

    # === Line handling ===

    def _consume(self, session_id: str, tailer: LineSource) -> None:
        """Read one tailer until either of its queues is closed."""
        poll = self.config.monitor.poll_interval
        try:
            while True:
                if not self._forward_errors(session_id, tailer):
                    return

                try:
                    item = tailer.lines.get(timeout=poll)
                except queue.Empty:
                    if self._stopping.is_set():
                        return
                    continue

                if item is CLOSED:
                    self._forward_errors(session_id, tailer)
                    return
                self.handle_line(session_id, item)
        finally:
            self.registry.mark_inactive(session_id)
            with self._lock:
                if self._consumers.get(session_id) is threading.current_thread():
                    del self._consumers[session_id]
            logger.debug("Consumer for %s stopped", session_id)

    def _forward_errors(self, session_id: str, tailer: LineSource) -> bool:
        """Send pending tailer errors as events.

        Returns:
            False once the error queue is closed
        """
        while True:
            try:
                error = tailer.errors.get_nowait()
            except queue.Empty:
                return True
            if error is CLOSED:
                return False
            logger.debug("Watcher error for %s: %s", session_id, error)
            self.sink.send(ErrorEvent(session_id=session_id, message=str(error)))

    def handle_line(self, session_id: str, line: str) -> Optional[SessionState]:
        """Fold one transcript line into the session's totals.

        Returns:
            The updated session state, or None if the line carried no usage
        """
        try:
            msg = parse_line(line)
        except TranscriptParseError as e:
            self.parse_errors += 1
            logger.warning("Skipping malformed line in %s: %s", session_id, e)
            return None
        if msg is None:
            return None

        stats = calculate_stats(msg)
        model = msg.message.model or None
        cost = self.pricing.cost_of(model, stats)

        try:
            state = self.registry.update_tokens(
                session_id,
                stats.input,
                stats.output,
                stats.cache_read,
                cost,
                model=model,
                cache_creation_tokens=stats.cache_creation,
            )
        except SessionNotFoundError:
            logger.debug("Dropping line for removed session %s", session_id)
            return None

        self._save_history(state)

        self.sink.send(
            TokenUpdate(
                session_id=session_id,
                model=state.model or "",
                input_tokens=state.input_tokens,
                output_tokens=state.output_tokens,
                cache_tokens=state.cache_tokens,
                total_tokens=state.total_tokens,
                cost=state.cost,
                context_pct=state.context_pct,
            )
        )
        self.sink.send(RateLimitUpdate(session_id=session_id, status=state.rate_limit))
        return state

    def _save_history(self, state: SessionState) -> None:
        if self.history is None:
            return
        try:
            self.history.save_or_update(HistoryRecord.from_state(state))
        except duckdb.Error as e:
            logger.warning("Could not save history for %s: %s", state.session_id, e)
            self.sink.send(
                ErrorEvent(session_id=state.session_id, message=f"history: {e}")
            )

    # === Events ===

    def _send_session_list(self) -> None:
        self.sink.send(
            SessionListUpdate(
                sessions=self.registry.get_all_sessions(),
                active_id=self.registry.active_id,
            )
        )

    def _send_history(self) -> None:
        if self.history is None:
            return
        try:
            records = self.history.recent_history(self.config.ui.history_limit)
        except duckdb.Error as e:
            logger.warning("Could not load history: %s", e)
            return
        self.sink.send(
            HistoryLoaded(
                history=[
                    HistoryEntry(
                        session_id=r.id,
                        timestamp=r.timestamp,
                        total_tokens=r.total_tokens,
                        cost=r.cost,
                        project=r.project,
                    )
                    for r in records
                ]
            )
        )

    def _send_rate_limit(self, session_id: str) -> None:
        try:
            status = self.registry.rate_limit_status(session_id)
        except SessionNotFoundError:
            return
        self.sink.send(RateLimitUpdate(session_id=session_id, status=status))

    def _maintenance_loop(self, rediscover: bool) -> None:
        """Periodic rate limit refresh and rediscovery."""
        interval = self.config.monitor.rediscovery_interval
        last_scan = time.monotonic()

        while not self._stopping.wait(self.rate_limit_interval):
            active = self.registry.active_id
            if active:
                self._send_rate_limit(active)

            if rediscover and time.monotonic() - last_scan >= interval:
                last_scan = time.monotonic()
                self.rediscover()
