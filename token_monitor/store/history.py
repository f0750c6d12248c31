"""DuckDB-backed store of per-session totals.

Each session has one row holding its latest absolute totals; saving again
replaces the row rather than adding to it.
"""

import logging
import os
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import duckdb
from pydantic import BaseModel, Field

from ..config import default_history_db_path
from ..models.session import SessionState
from .schema import HistorySchema

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


def get_default_history_path() -> Path:
    """Get default history database path, creating its directory."""
    path = Path(os.path.expandvars(default_history_db_path())).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


class HistoryRecord(BaseModel):
    """Latest totals recorded for one session."""

    id: str
    timestamp: datetime = Field(default_factory=datetime.now)
    model: Optional[str] = None
    project: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_tokens: int = 0
    total_tokens: int = 0
    cost: Decimal = Field(default=Decimal("0"))

    @classmethod
    def from_state(cls, state: SessionState) -> "HistoryRecord":
        return cls(
            id=state.session_id,
            timestamp=state.last_update,
            model=state.model,
            project=state.project,
            input_tokens=state.input_tokens,
            output_tokens=state.output_tokens,
            cache_tokens=state.cache_tokens,
            total_tokens=state.total_tokens,
            cost=state.cost,
        )


class HistoryStore:
    """Manages the DuckDB history database."""

    _COLUMNS = (
        "id, timestamp, model, project, input_tokens, output_tokens, "
        "cache_tokens, total_tokens, cost"
    )

    def __init__(self, db_path: Optional[str] = None, read_only: bool = False):
        """Initialize history store.

        Args:
            db_path: Path to DuckDB database file, or ":memory:"
                (default: $XDG_CACHE_HOME/token-monitor/history.duckdb)
            read_only: Open database in read-only mode
        """
        if db_path == MEMORY_DB:
            self.db_path = MEMORY_DB
        elif db_path:
            path = Path(db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(path)
        else:
            self.db_path = str(get_default_history_path())

        self._read_only = read_only
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create database connection. Caller holds the lock."""
        if self._conn is None:
            self._conn = duckdb.connect(self.db_path, read_only=self._read_only)
            if not self._read_only and HistorySchema.needs_migration(self._conn):
                HistorySchema.migrate(self._conn)
        return self._conn

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "HistoryStore":
        with self._lock:
            self._get_connection()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @staticmethod
    def _row_to_record(row) -> HistoryRecord:
        return HistoryRecord(
            id=row[0],
            timestamp=row[1],
            model=row[2],
            project=row[3] or "",
            input_tokens=row[4] or 0,
            output_tokens=row[5] or 0,
            cache_tokens=row[6] or 0,
            total_tokens=row[7] or 0,
            cost=Decimal(str(row[8] if row[8] is not None else 0)),
        )

    def save_or_update(self, record: HistoryRecord) -> None:
        """Insert a session row or replace it with newer totals."""
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                f"""
                INSERT OR REPLACE INTO sessions ({self._COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    record.id,
                    record.timestamp,
                    record.model,
                    record.project,
                    record.input_tokens,
                    record.output_tokens,
                    record.cache_tokens,
                    record.total_tokens,
                    record.cost,
                ],
            )

    def recent_history(self, limit: int = 10) -> List[HistoryRecord]:
        """Most recently updated sessions, newest first."""
        with self._lock:
            conn = self._get_connection()
            rows = conn.execute(
                f"""
                SELECT {self._COLUMNS} FROM sessions
                ORDER BY timestamp DESC
                LIMIT ?
                """,
                [limit],
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_session(self, session_id: str) -> Optional[HistoryRecord]:
        with self._lock:
            conn = self._get_connection()
            row = conn.execute(
                f"SELECT {self._COLUMNS} FROM sessions WHERE id = ?",
                [session_id],
            ).fetchone()
        return self._row_to_record(row) if row else None

    def delete_session(self, session_id: str) -> None:
        with self._lock:
            conn = self._get_connection()
            conn.execute("DELETE FROM sessions WHERE id = ?", [session_id])

    def count(self) -> int:
        with self._lock:
            conn = self._get_connection()
            result = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()
        return result[0] if result else 0
