"""Persistent session history for Token Monitor."""

from .history import HistoryRecord, HistoryStore, get_default_history_path
from .schema import HistorySchema

__all__ = [
    "HistoryRecord",
    "HistorySchema",
    "HistoryStore",
    "get_default_history_path",
]
