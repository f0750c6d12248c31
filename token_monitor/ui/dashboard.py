"""Rich console dashboard for live session monitoring."""

import logging
import sys
import threading
import time
from collections import deque
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from queue import Empty, Queue
from typing import Deque, Dict, List, Optional, TYPE_CHECKING

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from ..models.events import (
    ErrorEvent,
    HistoryEntry,
    HistoryLoaded,
    MonitorEvent,
    RateLimitUpdate,
    SessionFound,
    SessionListUpdate,
    SessionSwitch,
    TokenUpdate,
    WatcherFailed,
    WatcherStarted,
)
from ..models.limits import RateLimitStatus
from ..models.session import SessionState

if TYPE_CHECKING:
    from ..services.live_monitor import LiveMonitor

logger = logging.getLogger(__name__)

_key_queue: Queue = Queue()
_keyboard_thread_started = False

STATUS_STYLES = {"ok": "green", "warning": "yellow", "critical": "red"}


def _start_keyboard_listener() -> None:
    """Start background thread for keyboard input."""
    global _keyboard_thread_started
    if _keyboard_thread_started or not sys.stdin.isatty():
        return
    _keyboard_thread_started = True

    def listen():
        if sys.platform == "win32":
            import msvcrt

            while True:
                if msvcrt.kbhit():
                    key = msvcrt.getch()
                    # Arrow keys arrive as a two-byte sequence
                    if key in (b"\x00", b"\xe0"):
                        special = msvcrt.getch()
                        if special == b"M":
                            _key_queue.put("n")
                        elif special == b"K":
                            _key_queue.put("p")
                    else:
                        _key_queue.put(key.decode("utf-8", errors="ignore").lower())
                time.sleep(0.05)
        else:
            import select
            import termios
            import tty

            old_settings = termios.tcgetattr(sys.stdin)
            try:
                tty.setcbreak(sys.stdin.fileno())
                while True:
                    if select.select([sys.stdin], [], [], 0.1)[0]:
                        key = sys.stdin.read(1)
                        if key == "\x1b":
                            sequence = sys.stdin.read(2)
                            if sequence == "[C":
                                _key_queue.put("n")
                            elif sequence == "[D":
                                _key_queue.put("p")
                            continue
                        _key_queue.put(key.lower())
            except (OSError, ValueError) as e:
                logger.debug("Keyboard listener stopped: %s", e)
            finally:
                termios.tcsetattr(sys.stdin, termios.TCSADRAIN, old_settings)

    thread = threading.Thread(target=listen, name="keyboard", daemon=True)
    thread.start()


def get_key() -> Optional[str]:
    """Get a keypress from queue (non-blocking)."""
    try:
        return _key_queue.get_nowait()
    except Empty:
        return None


def format_tokens(count: int) -> str:
    """Compact token count: 950, 12.3K, 1.20M."""
    if count >= 1_000_000:
        return f"{count / 1_000_000:.2f}M"
    if count >= 1_000:
        return f"{count / 1_000:.1f}K"
    return str(count)


def format_cost(cost: Decimal) -> str:
    return f"${cost:.4f}" if cost < 1 else f"${cost:.2f}"


def _pct_style(pct: float) -> str:
    if pct >= 80:
        return "red"
    if pct >= 50:
        return "yellow"
    return "green"


class Dashboard:
    """Event sink that keeps a view model and renders it with rich.

    Events may arrive from any thread; rendering happens on the caller's
    thread.
    """

    def __init__(self, console: Optional[Console] = None, stream_size: int = 6):
        self.console = console or Console()
        self._lock = threading.Lock()

        self.sessions: Dict[str, SessionState] = {}
        self.active_id: Optional[str] = None
        self.rate_limits: Dict[str, RateLimitStatus] = {}
        self.history: List[HistoryEntry] = []
        self.failed: Dict[str, str] = {}
        self.last_error: Optional[str] = None
        self.stream: Deque[str] = deque(maxlen=stream_size)
        self.started_at = datetime.now()

    # === EventSink ===

    def send(self, event: MonitorEvent) -> None:
        with self._lock:
            self._apply(event)

    def _apply(self, event: MonitorEvent) -> None:
        stamp = event.created_at.strftime("%H:%M:%S")

        if isinstance(event, TokenUpdate):
            state = self.sessions.get(event.session_id) or SessionState(
                session_id=event.session_id,
                file_path=Path(event.session_id),
                project="",
            )
            self.sessions[event.session_id] = state.model_copy(
                update={
                    "model": event.model or state.model,
                    "input_tokens": event.input_tokens,
                    "output_tokens": event.output_tokens,
                    "cache_tokens": event.cache_tokens,
                    "total_tokens": event.total_tokens,
                    "cost": event.cost,
                    "context_pct": event.context_pct,
                    "last_update": event.created_at,
                }
            )
            self.last_error = None
            self.stream.append(
                f"[dim]{stamp}[/dim] {event.session_id[:8]} "
                f"{format_tokens(event.total_tokens)} tokens {format_cost(event.cost)}"
            )

        elif isinstance(event, SessionListUpdate):
            self.sessions = dict(event.sessions)
            self.active_id = event.active_id

        elif isinstance(event, SessionSwitch):
            self.active_id = event.session_id

        elif isinstance(event, SessionFound):
            self.stream.append(
                f"[dim]{stamp}[/dim] [cyan]found[/cyan] {event.session_id[:8]} ({event.project})"
            )

        elif isinstance(event, RateLimitUpdate):
            self.rate_limits[event.session_id] = event.status

        elif isinstance(event, HistoryLoaded):
            self.history = list(event.history)

        elif isinstance(event, WatcherStarted):
            self.failed.pop(event.session_id, None)

        elif isinstance(event, WatcherFailed):
            self.failed[event.session_id] = event.message
            self.last_error = f"{event.session_id[:8]}: {event.message}"

        elif isinstance(event, ErrorEvent):
            prefix = f"{event.session_id[:8]}: " if event.session_id else ""
            self.last_error = f"{prefix}{event.message}"
            self.stream.append(f"[dim]{stamp}[/dim] [red]error[/red] {self.last_error}")

    # === Rendering ===

    def _header(self) -> Panel:
        active = self.sessions.get(self.active_id) if self.active_id else None
        total_cost = sum((s.cost for s in self.sessions.values()), Decimal("0"))

        if active is None:
            text = "[bold cyan]TOKEN MONITOR[/bold cyan]  [dim]waiting for sessions[/dim]"
        else:
            status = self.rate_limits.get(active.session_id, active.rate_limit)
            style = STATUS_STYLES.get(status.status_level, "white")
            text = (
                f"[bold cyan]TOKEN MONITOR[/bold cyan]  "
                f"[dim]|[/dim]  [bold white]{active.session_id[:8]}[/bold white] "
                f"[dim]{active.project}[/dim]  "
                f"[dim]|[/dim]  {active.model or 'unknown model'}  "
                f"[dim]|[/dim]  [{_pct_style(active.context_pct)}]"
                f"{active.context_pct:.1f}% context[/{_pct_style(active.context_pct)}]  "
                f"[dim]|[/dim]  [bold white]{format_cost(active.cost)}[/bold white]  "
                f"[dim]|[/dim]  [{style}]{status.status_level.upper()}[/{style}]  "
                f"[dim]|[/dim]  [dim]total {format_cost(total_cost)}[/dim]"
            )
        return Panel(text, border_style="cyan", padding=(0, 1))

    def _sessions_table(self) -> Table:
        table = Table(expand=True, border_style="dim")
        table.add_column("", width=1)
        table.add_column("Session")
        table.add_column("Project", overflow="fold")
        table.add_column("Model")
        table.add_column("Input", justify="right")
        table.add_column("Output", justify="right")
        table.add_column("Cache", justify="right")
        table.add_column("Context", justify="right")
        table.add_column("Cost", justify="right")

        for session_id in sorted(self.sessions):
            state = self.sessions[session_id]
            marker = "[bold cyan]>[/bold cyan]" if session_id == self.active_id else ""
            name = session_id[:8]
            if session_id in self.failed:
                name = f"[red]{name}[/red]"
            elif not state.is_active:
                name = f"[dim]{name}[/dim]"
            pct_style = _pct_style(state.context_pct)
            table.add_row(
                marker,
                name,
                state.project,
                state.model or "-",
                format_tokens(state.input_tokens),
                format_tokens(state.output_tokens),
                format_tokens(state.cache_tokens),
                f"[{pct_style}]{state.context_pct:.1f}%[/{pct_style}]",
                format_cost(state.cost),
            )
        return table

    def _rate_limit_panel(self) -> Panel:
        status = self.rate_limits.get(self.active_id) if self.active_id else None
        if status is None:
            return Panel("[dim]No rate limit data[/dim]", title="Rate Limits", border_style="dim")

        style = STATUS_STYLES.get(status.status_level, "white")
        reset = status.time_until_reset()
        lines = [
            f"Requests  {status.requests_limit - status.requests_remaining}"
            f"/{status.requests_limit}  [{style}]{status.request_usage:.0f}%[/{style}]",
            f"Tokens    {format_tokens(status.tokens_limit - status.tokens_remaining)}"
            f"/{format_tokens(status.tokens_limit)}  [{style}]{status.token_usage:.0f}%[/{style}]",
            f"Reset in  {int(reset.total_seconds())}s",
        ]
        if status.is_limited:
            lines.append("[bold red]RATE LIMITED[/bold red]")
        return Panel("\n".join(lines), title="Rate Limits", border_style=style)

    def _history_panel(self) -> Panel:
        if not self.history:
            return Panel("[dim]No history[/dim]", title="History", border_style="dim")

        table = Table(expand=True, box=None, show_header=True, header_style="dim")
        table.add_column("When")
        table.add_column("Session")
        table.add_column("Tokens", justify="right")
        table.add_column("Cost", justify="right")
        for entry in self.history:
            table.add_row(
                entry.timestamp.strftime("%m-%d %H:%M"),
                entry.session_id[:8],
                format_tokens(entry.total_tokens),
                format_cost(entry.cost),
            )
        return Panel(table, title="History", border_style="dim magenta")

    def _stream_panel(self) -> Panel:
        lines = list(self.stream) or ["[dim]No activity yet[/dim]"]
        if self.last_error:
            lines.append(f"[bold red]Last error:[/bold red] {self.last_error}")
        return Panel("\n".join(lines), title="Live Stream", border_style="dim")

    def render(self) -> Layout:
        """Build the full dashboard layout from the current view model."""
        with self._lock:
            layout = Layout()
            layout.split_column(
                Layout(self._header(), size=3),
                Layout(name="middle", ratio=1),
                Layout(self._stream_panel(), size=self.stream.maxlen + 3),
                Layout(
                    Panel(
                        "[dim]n/→ next  p/← previous  r rescan  q quit[/dim]",
                        border_style="dim",
                        padding=(0, 1),
                    ),
                    size=3,
                ),
            )
            layout["middle"].split_row(
                Layout(self._sessions_table(), ratio=3),
                Layout(name="side", ratio=1),
            )
            layout["side"].split_column(
                Layout(self._rate_limit_panel(), size=7),
                Layout(self._history_panel(), ratio=1),
            )
            return layout

    # === Main loop ===

    def _handle_key(self, monitor: "LiveMonitor") -> bool:
        """Handle keyboard input. Returns False to quit."""
        key = get_key()
        if key is None:
            return True
        if key == "q":
            return False
        if key == "n":
            monitor.next_session()
        elif key == "p":
            monitor.previous_session()
        elif key == "r":
            monitor.rediscover()
        return True

    def run(self, monitor: "LiveMonitor", refresh_per_second: int = 4) -> None:
        """Render until the user quits or presses Ctrl+C."""
        _start_keyboard_listener()
        try:
            with Live(
                self.render(),
                refresh_per_second=refresh_per_second,
                console=self.console,
                screen=True,
            ) as live:
                while self._handle_key(monitor):
                    live.update(self.render())
                    time.sleep(1 / refresh_per_second)
        except KeyboardInterrupt:
            logger.debug("Dashboard interrupted")
