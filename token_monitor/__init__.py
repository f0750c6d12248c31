"""Token Monitor - live token, cost and rate-limit tracking for Claude Code sessions."""

__version__ = "0.3.0"
