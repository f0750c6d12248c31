"""Incremental tailing of growing transcript files.

A ``Tailer`` owns one file's read offset and runs on its own thread. It
first replays the usage-bearing lines already in the file (backfill), then
follows the file, reading new complete lines whenever the containing
directory reports a change or the poll timer fires. Lines and errors go out
on two queues; both receive ``CLOSED`` exactly once when the tailer stops.
"""

import logging
import os
import queue
import threading
import time
from enum import Enum
from typing import Callable, Iterable, List, Optional, Protocol, Set, Tuple

import watchfiles

from ..errors import WatchRuntimeError, WatchSetupError
from ..utils.file_system import FileSystem, OSFileSystem
from ..utils.transcript import is_assistant_message

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5


class _Closed:
    """Marker put on a tailer's queues when it stops."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CLOSED"


CLOSED = _Closed()


class TailerState(Enum):
    CREATED = "created"
    BACKFILL_SENT = "backfill_sent"
    LIVE = "live"
    CLOSED = "closed"


def split_complete_lines(data: bytes) -> Tuple[List[str], int]:
    """Split ``data`` into complete lines.

    Returns:
        Tuple of (non-blank lines, number of bytes consumed). Bytes after the
        last newline are not consumed.
    """
    end = data.rfind(b"\n")
    if end == -1:
        return [], 0

    lines = []
    for raw in data[: end + 1].split(b"\n"):
        line = raw.decode("utf-8", errors="replace").rstrip("\r")
        if line.strip():
            lines.append(line)
    return lines, end + 1


def tail_file(fs: FileSystem, path: str, offset: int) -> Tuple[List[str], int]:
    """Read complete lines appended after ``offset``.

    A trailing line without its newline is left for the next call. If the
    file has shrunk below ``offset`` it is read again from the start.

    Returns:
        Tuple of (lines, new offset)
    """
    size = fs.stat(path).size
    if size < offset:
        logger.info("%s was truncated, re-reading from the start", path)
        offset = 0
    if size == offset:
        return [], offset

    with fs.open(path) as f:
        f.seek(offset)
        data = f.read(size - offset)

    lines, consumed = split_complete_lines(data)
    return lines, offset + consumed


class LineSource(Protocol):
    """What a consumer needs from a tailer."""

    lines: "queue.Queue"
    errors: "queue.Queue"

    def close(self) -> None: ...


ChangeCallback = Callable[[Set[str]], None]
ErrorCallback = Callable[[BaseException], None]


class DirectoryNotifier:
    """Watches one directory with watchfiles on a background thread.

    Changed paths are reported through ``on_change``. Errors raised by the
    watcher are reported through ``on_error`` and watching resumes after
    ``retry_interval``.
    """

    def __init__(
        self,
        directory: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback,
        retry_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.directory = directory
        self._on_change = on_change
        self._on_error = on_error
        self._retry_interval = retry_interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run, name=f"notifier:{self.directory}", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                for changes in watchfiles.watch(
                    self.directory,
                    stop_event=self._stop,
                    recursive=False,
                    debounce=100,
                    step=50,
                ):
                    self._on_change({os.path.abspath(path) for _, path in changes})
            except Exception as e:
                if self._stop.is_set():
                    return
                logger.debug("Watcher on %s failed: %s", self.directory, e)
                self._on_error(e)
                self._stop.wait(self._retry_interval)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1)


NotifierFactory = Callable[[str, ChangeCallback, ErrorCallback], DirectoryNotifier]


class Tailer:
    """Follows one transcript file and emits its new lines in order."""

    def __init__(
        self,
        path: str,
        fs: Optional[FileSystem] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        notifier_factory: Optional[NotifierFactory] = None,
    ):
        """Attach to ``path`` and start following it.

        Args:
            path: Transcript file to follow
            fs: File system to read through
            poll_interval: Seconds between polls when no change is reported
            notifier_factory: Builds the directory notifier; defaults to
                ``DirectoryNotifier``

        Raises:
            WatchSetupError: The file or its directory cannot be watched.
        """
        self.path = os.path.abspath(str(path))
        self.directory = os.path.dirname(self.path)
        self.fs = fs or OSFileSystem()
        self.poll_interval = poll_interval

        self.lines: "queue.Queue" = queue.Queue()
        self.errors: "queue.Queue" = queue.Queue()

        self._inbox: "queue.Queue" = queue.Queue()
        self._closed = threading.Event()
        self.state = TailerState.CREATED

        try:
            self._start_size = self.fs.stat(self.path).size
        except OSError as e:
            raise WatchSetupError(self.path, str(e)) from e

        try:
            dir_stat = self.fs.stat(self.directory)
        except OSError as e:
            raise WatchSetupError(self.path, f"directory unavailable: {e}") from e
        if not dir_stat.is_dir:
            raise WatchSetupError(self.path, f"{self.directory} is not a directory")

        self.offset = 0

        factory = notifier_factory or DirectoryNotifier
        try:
            self._notifier = factory(self.directory, self._notify_change, self._notify_error)
            self._notifier.start()
        except Exception as e:
            raise WatchSetupError(self.path, f"cannot start notifier: {e}") from e

        self._thread = threading.Thread(
            target=self._run, name=f"tailer:{os.path.basename(self.path)}", daemon=True
        )
        self._thread.start()

    def _notify_change(self, paths: Iterable[str]) -> None:
        self._inbox.put(("change", set(paths)))

    def _notify_error(self, error: BaseException) -> None:
        self._inbox.put(("error", error))

    def _run(self) -> None:
        try:
            self._backfill()
            if not self._closed.is_set():
                self.state = TailerState.LIVE

            next_poll = time.monotonic() + self.poll_interval
            while not self._closed.is_set():
                try:
                    kind, payload = self._inbox.get(
                        timeout=max(0.0, next_poll - time.monotonic())
                    )
                except queue.Empty:
                    kind, payload = None, None

                if kind == "close":
                    break
                if kind == "change" and self.path in payload:
                    self._check_for_new_content()
                elif kind == "error":
                    self.errors.put(WatchRuntimeError(self.path, payload))

                # Poll on a fixed period regardless of inbox traffic
                now = time.monotonic()
                if now >= next_poll:
                    self._check_for_new_content()
                    next_poll = now + self.poll_interval
        finally:
            self._notifier.stop()
            self.state = TailerState.CLOSED
            self.lines.put(CLOSED)
            self.errors.put(CLOSED)

    def _backfill(self) -> None:
        """Emit usage-bearing lines already present when the tailer started."""
        try:
            with self.fs.open(self.path) as f:
                data = f.read(self._start_size)
        except OSError as e:
            self.errors.put(WatchRuntimeError(self.path, e))
            return

        lines, consumed = split_complete_lines(data)
        for line in lines:
            if is_assistant_message(line):
                self.lines.put(line)
        self.offset = consumed
        self.state = TailerState.BACKFILL_SENT

    def _check_for_new_content(self) -> None:
        try:
            lines, new_offset = tail_file(self.fs, self.path, self.offset)
        except OSError as e:
            logger.debug("Tail read of %s failed: %s", self.path, e)
            self.errors.put(WatchRuntimeError(self.path, e))
            return

        for line in lines:
            self.lines.put(line)
        self.offset = new_offset

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """Stop following the file. Safe to call more than once."""
        if self._closed.is_set():
            return
        self._closed.set()
        self._inbox.put(("close", None))

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)


class FakeTailer:
    """Hand-driven stand-in for ``Tailer`` in tests."""

    def __init__(self, path: str = "fake.jsonl"):
        self.path = path
        self.lines: "queue.Queue" = queue.Queue()
        self.errors: "queue.Queue" = queue.Queue()
        self._lock = threading.Lock()
        self._lines_closed = False
        self._errors_closed = False
        self.close_calls = 0

    def send_line(self, line: str) -> None:
        self.lines.put(line)

    def send_error(self, error: BaseException) -> None:
        self.errors.put(error)

    def close_lines_only(self) -> None:
        with self._lock:
            if not self._lines_closed:
                self._lines_closed = True
                self.lines.put(CLOSED)

    def close_errors_only(self) -> None:
        with self._lock:
            if not self._errors_closed:
                self._errors_closed = True
                self.errors.put(CLOSED)

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._lines_closed and self._errors_closed

    def close(self) -> None:
        with self._lock:
            self.close_calls += 1
        self.close_lines_only()
        self.close_errors_only()
