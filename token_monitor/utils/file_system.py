"""File system capability used by discovery, tailing and the transcript cache.

Components never touch ``os`` directly; they receive a ``FileSystem`` so tests
can substitute ``MemoryFileSystem`` for deterministic behaviour. Missing paths
always surface as ``FileNotFoundError`` so callers can tell them apart from
other I/O failures.
"""

import io
import os
import posixpath
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Dict, Iterator, List, Optional, Tuple


@dataclass(frozen=True)
class FileStat:
    """Subset of stat information the monitor cares about."""

    size: int
    mtime_ns: int
    is_dir: bool = False

    @property
    def mtime(self) -> float:
        """Modification time in seconds since the epoch."""
        return self.mtime_ns / 1_000_000_000


class FileSystem(ABC):
    """Minimal file system interface."""

    @abstractmethod
    def stat(self, path: str) -> FileStat:
        """Return stat information for ``path``."""

    @abstractmethod
    def open(self, path: str) -> BinaryIO:
        """Open ``path`` for binary reading."""

    @abstractmethod
    def list_dir(self, path: str) -> List[str]:
        """Return the entry names directly inside ``path``."""

    @abstractmethod
    def walk(self, root: str) -> Iterator[Tuple[str, List[str], List[str]]]:
        """Yield ``(dirpath, dirnames, filenames)`` like ``os.walk``."""

    @abstractmethod
    def mkdir_all(self, path: str) -> None:
        """Create ``path`` and any missing parents."""


class OSFileSystem(FileSystem):
    """FileSystem backed by the real operating system."""

    def stat(self, path: str) -> FileStat:
        st = os.stat(path)
        return FileStat(
            size=st.st_size,
            mtime_ns=st.st_mtime_ns,
            is_dir=os.path.isdir(path),
        )

    def open(self, path: str) -> BinaryIO:
        return open(path, "rb")

    def list_dir(self, path: str) -> List[str]:
        return sorted(os.listdir(path))

    def walk(self, root: str) -> Iterator[Tuple[str, List[str], List[str]]]:
        def _raise(error: OSError) -> None:
            raise error

        yield from os.walk(root, onerror=_raise)

    def mkdir_all(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)


class MemoryFileSystem(FileSystem):
    """In-memory FileSystem for tests.

    Paths are POSIX-style strings. Directories are created implicitly when a
    file is written beneath them.
    """

    def __init__(self) -> None:
        self._files: Dict[str, bytearray] = {}
        self._mtimes: Dict[str, int] = {}
        self._dirs: set = {"/"}

    @staticmethod
    def _norm(path: str) -> str:
        return posixpath.normpath(str(path))

    def write_file(
        self, path: str, content: bytes, mtime: Optional[float] = None
    ) -> None:
        """Create or replace a file."""
        path = self._norm(path)
        self.mkdir_all(posixpath.dirname(path))
        self._files[path] = bytearray(content)
        self._touch(path, mtime)

    def append_file(self, path: str, content: bytes, mtime: Optional[float] = None) -> None:
        """Append to a file, creating it if needed."""
        path = self._norm(path)
        if path not in self._files:
            self.write_file(path, content, mtime)
            return
        self._files[path].extend(content)
        self._touch(path, mtime)

    def remove(self, path: str) -> None:
        """Delete a file."""
        path = self._norm(path)
        if path not in self._files:
            raise FileNotFoundError(path)
        del self._files[path]
        del self._mtimes[path]

    def _touch(self, path: str, mtime: Optional[float]) -> None:
        if mtime is None:
            self._mtimes[path] = time.time_ns()
        else:
            self._mtimes[path] = int(mtime * 1_000_000_000)

    def stat(self, path: str) -> FileStat:
        path = self._norm(path)
        if path in self._files:
            return FileStat(size=len(self._files[path]), mtime_ns=self._mtimes[path])
        if path in self._dirs:
            return FileStat(size=0, mtime_ns=0, is_dir=True)
        raise FileNotFoundError(path)

    def open(self, path: str) -> BinaryIO:
        path = self._norm(path)
        if path not in self._files:
            raise FileNotFoundError(path)
        return io.BytesIO(bytes(self._files[path]))

    def list_dir(self, path: str) -> List[str]:
        path = self._norm(path)
        if path not in self._dirs:
            raise FileNotFoundError(path)
        names = set()
        for entry in list(self._dirs) + list(self._files):
            if entry != path and posixpath.dirname(entry) == path:
                names.add(posixpath.basename(entry))
        return sorted(names)

    def walk(self, root: str) -> Iterator[Tuple[str, List[str], List[str]]]:
        root = self._norm(root)
        if root not in self._dirs:
            raise FileNotFoundError(root)
        pending = [root]
        while pending:
            current = pending.pop(0)
            dirnames = []
            filenames = []
            for name in self.list_dir(current):
                full = posixpath.join(current, name)
                if full in self._dirs:
                    dirnames.append(name)
                else:
                    filenames.append(name)
            yield current, dirnames, filenames
            pending.extend(posixpath.join(current, d) for d in dirnames)

    def mkdir_all(self, path: str) -> None:
        path = self._norm(path)
        while path not in self._dirs:
            self._dirs.add(path)
            path = posixpath.dirname(path)
