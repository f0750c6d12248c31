"""Error types for Token Monitor.

Only setup faults propagate to callers. Per-line and per-file faults raised
while a session is being watched are absorbed by the component that hit them
and reported as events instead.
"""


class MonitorError(Exception):
    """Base class for all Token Monitor errors."""


class DiscoveryError(MonitorError):
    """Session discovery could not complete."""


class NoSessionsFoundError(DiscoveryError):
    """The projects directory is missing or holds no eligible transcripts."""

    def __init__(self, projects_dir: str = ""):
        self.projects_dir = projects_dir
        message = "no Claude Code sessions found"
        if projects_dir:
            message = f"{message} in {projects_dir}"
        super().__init__(message)


class WatchSetupError(MonitorError):
    """A tailer could not be attached to its transcript file."""

    def __init__(self, file_path: str, reason: str):
        self.file_path = file_path
        self.reason = reason
        super().__init__(f"cannot watch {file_path}: {reason}")


class WatchRuntimeError(MonitorError):
    """A transient failure inside a running tailer (read or notifier error)."""

    def __init__(self, file_path: str, cause: BaseException):
        self.file_path = file_path
        self.cause = cause
        super().__init__(f"watcher error on {file_path}: {cause}")


class TranscriptParseError(MonitorError):
    """A line that looks like an assistant message failed to deserialize."""

    def __init__(self, line: str, cause: BaseException):
        self.line = line
        self.cause = cause
        super().__init__(f"failed to parse assistant message: {cause}")


class SessionExistsError(MonitorError):
    """A session with the same id is already registered."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"session {session_id} already exists")


class SessionNotFoundError(MonitorError):
    """No session with the given id is registered."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"session {session_id} not found")


class UpdateCheckError(MonitorError):
    """The latest release could not be fetched."""


def create_user_friendly_error(error: BaseException) -> str:
    """Turn an exception into a short message suitable for the CLI."""
    if isinstance(error, NoSessionsFoundError):
        return (
            f"{error}. Make sure Claude Code is running and you have an "
            "active conversation."
        )
    if isinstance(error, WatchSetupError):
        return f"Failed to start file watcher: {error.reason} ({error.file_path})"
    if isinstance(error, MonitorError):
        return str(error)
    if isinstance(error, FileNotFoundError):
        return f"File not found: {error.filename or error}"
    if isinstance(error, PermissionError):
        return f"Permission denied: {error.filename or error}"
    if isinstance(error, ValueError):
        return f"Invalid value: {error}"
    return f"Unexpected error: {error}"
