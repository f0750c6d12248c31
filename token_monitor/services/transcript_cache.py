"""Memoizing parse cache for transcript summaries."""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..models.session import TranscriptSummary
from ..utils.file_system import FileSystem, OSFileSystem
from ..utils.transcript import summarize_lines

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5.0
DEFAULT_MAX_LINES = 100
DEFAULT_TAIL_BYTES = 64 * 1024


@dataclass(frozen=True)
class CacheEntry:
    """A parsed summary tied to the file's identity at parse time."""

    path: str
    mtime_ns: int
    summary: TranscriptSummary
    written_at: float


class TranscriptCache:
    """Caches transcript summaries keyed by path.

    An entry is served only while the file's mtime still matches and the
    entry is younger than the TTL. The lock covers only the validity check
    and the install; file reads happen outside it, so two racing callers may
    both re-read, which is bounded by the TTL.
    """

    def __init__(
        self,
        fs: Optional[FileSystem] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        tail_bytes: int = DEFAULT_TAIL_BYTES,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.fs = fs or OSFileSystem()
        self.ttl_seconds = ttl_seconds
        self.tail_bytes = tail_bytes
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}

    def parse(self, path: str, max_lines: int = DEFAULT_MAX_LINES) -> TranscriptSummary:
        """Summarize the last ``max_lines`` lines of a transcript.

        A file that cannot be stat'ed yields an empty summary rather than an
        error.
        """
        path = str(path)
        try:
            stat = self.fs.stat(path)
        except OSError as e:
            logger.debug("Cannot stat %s: %s", path, e)
            return TranscriptSummary()

        with self._lock:
            entry = self._entries.get(path)
            if entry is not None and self._is_valid(entry, stat.mtime_ns):
                return entry.summary.model_copy()

        try:
            lines = self._read_tail(path, stat.size, max_lines)
        except OSError as e:
            logger.debug("Cannot read %s: %s", path, e)
            return TranscriptSummary()

        summary = summarize_lines(lines)

        with self._lock:
            self._entries[path] = CacheEntry(
                path=path,
                mtime_ns=stat.mtime_ns,
                summary=summary,
                written_at=self._clock(),
            )
        return summary.model_copy()

    def _is_valid(self, entry: CacheEntry, mtime_ns: int) -> bool:
        if entry.mtime_ns != mtime_ns:
            return False
        return self._clock() - entry.written_at < self.ttl_seconds

    def _read_tail(self, path: str, size: int, max_lines: int) -> List[str]:
        """Read the last ``max_lines`` complete lines within ``tail_bytes``."""
        start = max(0, size - self.tail_bytes)
        with self.fs.open(path) as f:
            f.seek(start)
            data = f.read()

        text = data.decode("utf-8", errors="replace")
        lines = text.split("\n")
        if start > 0 and lines:
            # First line is cut mid-way
            lines = lines[1:]

        tail: deque = deque(maxlen=max_lines)
        for line in lines:
            if line.strip():
                tail.append(line)
        return list(tail)

    def get_entry(self, path: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(str(path))

    def invalidate(self, path: str) -> None:
        """Drop the entry for one path."""
        with self._lock:
            self._entries.pop(str(path), None)

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
