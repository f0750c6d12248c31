"""Session discovery across a Claude Code projects tree.

The projects root holds one directory per project; transcripts live
anywhere beneath a project directory. Sub-agent transcripts and empty files
are not sessions.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from ..errors import DiscoveryError, NoSessionsFoundError
from ..models.session import SessionInfo
from ..utils.file_system import FileSystem, OSFileSystem

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryResult:
    """Sessions found under a projects root, newest first."""

    sessions: List[SessionInfo] = field(default_factory=list)
    active_id: Optional[str] = None
    error_count: int = 0


class SessionLocator:
    """Finds transcript files under a projects root."""

    def __init__(
        self,
        fs: Optional[FileSystem] = None,
        extension: str = ".jsonl",
        agent_marker: str = "agent-",
        clock=None,
    ):
        self.fs = fs or OSFileSystem()
        self.extension = extension
        self.agent_marker = agent_marker
        self._clock = clock or datetime.now

    def _is_candidate(self, filename: str) -> bool:
        if not filename.endswith(self.extension):
            return False
        if self.agent_marker and self.agent_marker in filename:
            return False
        return True

    def _scan_project(self, project_dir: str, project: str) -> List[SessionInfo]:
        sessions = []
        for dirpath, _dirnames, filenames in self.fs.walk(project_dir):
            for filename in filenames:
                if not self._is_candidate(filename):
                    continue

                path = os.path.join(dirpath, filename)
                try:
                    stat = self.fs.stat(path)
                except FileNotFoundError:
                    # Deleted between listing and stat
                    continue
                if stat.is_dir or stat.size == 0:
                    continue

                sessions.append(
                    SessionInfo(
                        session_id=filename[: -len(self.extension)],
                        file_path=path,
                        project=project,
                        last_modified=datetime.fromtimestamp(stat.mtime),
                        size=stat.size,
                    )
                )
        return sessions

    def discover(
        self,
        root_dir: str,
        max_results: Optional[int] = None,
        active_within: Optional[timedelta] = None,
    ) -> DiscoveryResult:
        """Find sessions under ``root_dir``.

        Args:
            root_dir: Projects root
            max_results: Keep at most this many of the newest sessions
            active_within: Only keep sessions modified within this window

        Raises:
            DiscoveryError: The root cannot be listed.
        """
        root_dir = os.path.expanduser(str(root_dir))
        result = DiscoveryResult()

        try:
            entries = self.fs.list_dir(root_dir)
        except OSError as e:
            raise DiscoveryError(f"cannot read projects directory {root_dir}: {e}") from e

        for name in entries:
            project_dir = os.path.join(root_dir, name)
            try:
                if not self.fs.stat(project_dir).is_dir:
                    continue
                result.sessions.extend(self._scan_project(project_dir, name))
            except OSError as e:
                logger.warning("Skipping project %s: %s", project_dir, e)
                result.error_count += 1

        if active_within is not None:
            cutoff = self._clock() - active_within
            result.sessions = [s for s in result.sessions if s.last_modified >= cutoff]

        result.sessions.sort(key=lambda s: s.last_modified, reverse=True)

        if result.sessions:
            result.active_id = result.sessions[0].session_id

        if max_results is not None and max_results > 0:
            result.sessions = result.sessions[:max_results]

        logger.debug(
            "Discovered %d sessions under %s (%d errors)",
            len(result.sessions),
            root_dir,
            result.error_count,
        )
        return result

    def find_active(
        self, root_dir: str, active_within: Optional[timedelta] = None
    ) -> SessionInfo:
        """Return the most recently modified session.

        Raises:
            NoSessionsFoundError: The root is missing or holds no sessions.
        """
        try:
            result = self.discover(root_dir, max_results=1, active_within=active_within)
        except DiscoveryError as e:
            raise NoSessionsFoundError(str(root_dir)) from e

        if not result.sessions:
            raise NoSessionsFoundError(str(root_dir))
        return result.sessions[0]

    def new_sessions(
        self,
        root_dir: str,
        known_ids: Iterable[str],
        active_within: Optional[timedelta] = None,
    ) -> List[SessionInfo]:
        """Sessions under ``root_dir`` whose ids are not in ``known_ids``."""
        known = set(known_ids)
        result = self.discover(root_dir, active_within=active_within)
        return [s for s in result.sessions if s.session_id not in known]
