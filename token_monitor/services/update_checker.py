"""Background check for newer releases on GitHub."""

import json
import logging
import os
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Tuple

import requests
from pydantic import BaseModel

from ..errors import UpdateCheckError

logger = logging.getLogger(__name__)

DEFAULT_RELEASES_URL = (
    "https://api.github.com/repos/young1lin/claude-token-monitor/releases/latest"
)


def get_update_state_path() -> Path:
    """Get path for the update-check state file."""
    cache_base = Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))
    return cache_base / "token-monitor" / "update-state.json"


class ReleaseInfo(BaseModel):
    """Subset of a GitHub release."""

    tag_name: str
    name: str = ""
    html_url: str = ""
    body: str = ""


class UpdateState(BaseModel):
    """Persisted result of the last check."""

    last_check: Optional[datetime] = None
    latest_version: str = ""
    opt_out: bool = False


def parse_version(tag: str) -> str:
    """``v1.2.3`` -> ``1.2.3``"""
    return tag.strip().lstrip("v")


def _version_tuple(version: str) -> Optional[Tuple[int, ...]]:
    match = re.match(r"^(\d+)(?:\.(\d+))?(?:\.(\d+))?", version)
    if not match:
        return None
    return tuple(int(part or 0) for part in match.groups())


def needs_update(current: str, latest: str) -> bool:
    """True when ``latest`` is newer than ``current``. Dev builds always are."""
    if current == "dev":
        return True
    current_v = _version_tuple(parse_version(current))
    latest_v = _version_tuple(parse_version(latest))
    if current_v is None or latest_v is None:
        return False
    return latest_v > current_v


class UpdateChecker:
    """Checks GitHub for a newer release at most once per interval."""

    def __init__(
        self,
        current_version: str,
        api_url: str = DEFAULT_RELEASES_URL,
        check_interval: timedelta = timedelta(hours=24),
        state_path: Optional[Path] = None,
        timeout: float = 10.0,
    ):
        self.current_version = current_version
        self.api_url = api_url
        self.check_interval = check_interval
        self.state_path = state_path or get_update_state_path()
        self.timeout = timeout

    def load_state(self) -> UpdateState:
        if not self.state_path.exists():
            return UpdateState()
        try:
            with open(self.state_path, "r", encoding="utf-8") as f:
                return UpdateState(**json.load(f))
        except (OSError, json.JSONDecodeError, ValueError) as e:
            logger.debug("Ignoring unreadable update state %s: %s", self.state_path, e)
            return UpdateState()

    def save_state(self, state: UpdateState) -> None:
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.state_path, "w", encoding="utf-8") as f:
                f.write(state.model_dump_json(indent=2))
        except OSError as e:
            # A missing state file only means checking again next time
            logger.debug("Could not save update state: %s", e)

    def fetch_latest(self) -> ReleaseInfo:
        """Fetch the latest release.

        Raises:
            UpdateCheckError: The request failed or returned bad data.
        """
        try:
            response = requests.get(
                self.api_url,
                headers={
                    "Accept": "application/vnd.github.v3+json",
                    "User-Agent": "claude-token-monitor",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            return ReleaseInfo(**response.json())
        except (requests.RequestException, ValueError, TypeError) as e:
            raise UpdateCheckError(f"failed to fetch latest release: {e}") from e

    def check(self, force: bool = False) -> Optional[ReleaseInfo]:
        """Return the latest release if it is newer than the running version.

        Returns None when opted out, when checked within the interval, or when
        already up to date.

        Raises:
            UpdateCheckError: The release could not be fetched.
        """
        state = self.load_state()
        if not force:
            if state.opt_out:
                return None
            if state.last_check and datetime.now() - state.last_check < self.check_interval:
                return None

        release = self.fetch_latest()
        latest = parse_version(release.tag_name)
        self.save_state(
            UpdateState(
                last_check=datetime.now(),
                latest_version=latest,
                opt_out=state.opt_out,
            )
        )

        if needs_update(self.current_version, latest):
            return release
        return None

    def set_opt_out(self, opt_out: bool) -> None:
        state = self.load_state()
        state.opt_out = opt_out
        self.save_state(state)
