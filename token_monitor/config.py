"""Configuration management for Token Monitor."""

import json
import logging
import os
import toml
import yaml
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from decimal import Decimal

from .models.limits import RateLimitConfig

logger = logging.getLogger(__name__)


def claude_code_projects_path() -> str:
    """Get default Claude Code projects path."""
    return os.path.join("~", ".claude", "projects")


def default_history_db_path() -> str:
    base = os.getenv("XDG_CACHE_HOME") or "~/.cache"
    return os.path.join(base, "token-monitor", "history.duckdb")


class PathsConfig(BaseModel):
    """Configuration for file paths."""

    projects_dir: str = Field(default=claude_code_projects_path())
    history_db: str = Field(default=default_history_db_path())

    @field_validator("projects_dir", "history_db")
    @classmethod
    def expand_path(cls, v):
        """Expand user paths and environment variables."""
        return os.path.expanduser(os.path.expandvars(v))


class MonitorConfig(BaseModel):
    """Configuration for session discovery and tailing."""

    poll_interval_ms: int = Field(
        default=500,
        ge=50,
        le=10_000,
        description="Poll backstop period for each tailer",
    )
    max_sessions: int = Field(
        default=10, ge=1, le=100, description="Maximum sessions watched at once"
    )
    rediscovery_interval: float = Field(
        default=30.0,
        ge=1.0,
        description="Seconds between scans for newly started sessions",
    )
    transcript_extension: str = Field(default=".jsonl", pattern=r"^\.\w+$")
    agent_marker: str = Field(
        default="agent-", description="Filename marker of sub-agent transcripts"
    )
    active_within_minutes: Optional[float] = Field(
        default=None,
        gt=0,
        description="Only watch sessions modified within this many minutes",
    )

    @property
    def poll_interval(self) -> float:
        """Poll period in seconds."""
        return self.poll_interval_ms / 1000


class CacheConfig(BaseModel):
    """Configuration for the transcript parse cache."""

    ttl_seconds: float = Field(default=5.0, gt=0, le=300)
    max_lines: int = Field(default=100, ge=1, le=100_000)
    tail_bytes: int = Field(
        default=65536,
        ge=1024,
        description="Bytes read from the end of a transcript when summarizing",
    )


class UIConfig(BaseModel):
    """Configuration for UI appearance."""

    colors: bool = Field(default=True)
    refresh_per_second: int = Field(default=4, ge=1, le=30)
    history_limit: int = Field(default=10, ge=0, le=1000)


class UpdatesConfig(BaseModel):
    """Configuration for the background update check."""

    enabled: bool = Field(default=True)
    api_url: str = Field(
        default="https://api.github.com/repos/young1lin/claude-token-monitor/releases/latest"
    )
    check_interval_hours: int = Field(default=24, ge=1, le=24 * 30)


class Config(BaseModel):
    """Main configuration class."""

    paths: PathsConfig = Field(default_factory=PathsConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    updates: UpdatesConfig = Field(default_factory=UpdatesConfig)


class ModelPricing(BaseModel):
    """Model for pricing information."""

    name: str = Field(default="", description="Human-readable model name")
    input: Decimal = Field(description="Cost per 1M input tokens")
    output: Decimal = Field(description="Cost per 1M output tokens")
    cache_read: Decimal = Field(
        alias="cacheRead", description="Cost per 1M cache read tokens"
    )
    context_window: int = Field(
        alias="contextWindow", description="Maximum context window size"
    )

    model_config = ConfigDict(populate_by_name=True)


class ConfigManager:
    """Manages configuration loading and access."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file. If None, searches standard locations.
        """
        self.config_path = config_path or self._find_config_file()
        self._config: Optional[Config] = None
        self._pricing_data: Optional[Dict[str, ModelPricing]] = None
        self._limits_config: Optional[RateLimitConfig] = None

    def _find_config_file(self) -> str:
        """Find configuration file in standard locations."""
        search_paths = [
            os.path.expanduser("~/.config/token-monitor/config.toml"),
            "config.toml",
            "token_monitor.toml",
        ]

        for path in search_paths:
            if os.path.exists(path):
                return path

        # Return default path even if it doesn't exist
        return search_paths[0]

    @property
    def config(self) -> Config:
        """Get configuration, loading if necessary."""
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def _load_config(self) -> Config:
        """Load configuration from TOML file."""
        if not os.path.exists(self.config_path):
            return Config()

        try:
            with open(self.config_path, "r") as f:
                config_data = toml.load(f)
            return Config(**config_data)
        except (toml.TomlDecodeError, ValueError) as e:
            raise ValueError(f"Invalid configuration file {self.config_path}: {e}")

    def load_pricing_data(self) -> Dict[str, ModelPricing]:
        """Load model pricing overrides."""
        if self._pricing_data is None:
            self._pricing_data = self._load_pricing_data()
        return self._pricing_data

    def _load_pricing_data(self) -> Dict[str, ModelPricing]:
        """Load pricing overrides from a models.json next to the config file."""
        models_file = os.path.join(os.path.dirname(self.config_path), "models.json")
        if not os.path.exists(models_file):
            return {}

        try:
            with open(models_file, "r") as f:
                raw_data = json.load(f)

            pricing_data = {}
            for model_name, model_data in raw_data.items():
                pricing_data[model_name] = ModelPricing(**model_data)

            return pricing_data
        except (json.JSONDecodeError, ValueError) as e:
            raise ValueError(f"Invalid pricing file {models_file}: {e}")

    def reload(self):
        """Reload configuration, pricing and limits."""
        self._config = None
        self._pricing_data = None
        self._limits_config = None

    def _find_limits_file(self) -> Optional[str]:
        """Find limits configuration file."""
        search_paths = [
            os.path.join(os.path.dirname(self.config_path), "limits.yaml"),
            os.path.expanduser("~/.config/token-monitor/limits.yaml"),
            "limits.yaml",
        ]

        for path in search_paths:
            if os.path.exists(path):
                return path
        return None

    def load_limits_config(self) -> RateLimitConfig:
        """Load rate limit defaults."""
        if self._limits_config is None:
            self._limits_config = self._load_limits_config()
        return self._limits_config

    def _load_limits_config(self) -> RateLimitConfig:
        """Load limits from YAML file, falling back to the built-in defaults."""
        limits_file = self._find_limits_file()
        if not limits_file:
            return RateLimitConfig()

        try:
            with open(limits_file, "r", encoding="utf-8") as f:
                raw_data = yaml.safe_load(f)

            if not raw_data:
                return RateLimitConfig()

            return RateLimitConfig(**raw_data.get("rate_limits", raw_data))
        except (yaml.YAMLError, ValueError) as e:
            # Limits are optional
            logger.warning("Could not load limits config from %s: %s", limits_file, e)
            return RateLimitConfig()


# Global configuration manager instance
config_manager = ConfigManager()
