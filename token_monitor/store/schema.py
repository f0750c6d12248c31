"""DuckDB schema definitions for the session history database."""

from typing import Optional

import duckdb


class HistorySchema:
    """Manages DuckDB schema for the history database."""

    SCHEMA_VERSION = 1

    CREATE_META = """
    CREATE TABLE IF NOT EXISTS history_meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """

    CREATE_SESSIONS = """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        timestamp TIMESTAMP NOT NULL,
        model TEXT,
        project TEXT,
        input_tokens BIGINT DEFAULT 0,
        output_tokens BIGINT DEFAULT 0,
        cache_tokens BIGINT DEFAULT 0,
        total_tokens BIGINT DEFAULT 0,
        cost DECIMAL(18, 6) DEFAULT 0
    )
    """

    @classmethod
    def create_schema(cls, conn: duckdb.DuckDBPyConnection) -> None:
        """Create all tables and record the schema version."""
        conn.execute(cls.CREATE_META)
        conn.execute(cls.CREATE_SESSIONS)
        conn.execute(
            """
            INSERT OR REPLACE INTO history_meta (key, value, updated_at)
            VALUES ('schema_version', ?, CURRENT_TIMESTAMP)
            """,
            [str(cls.SCHEMA_VERSION)],
        )

    @classmethod
    def get_schema_version(cls, conn: duckdb.DuckDBPyConnection) -> Optional[int]:
        """Get current schema version, or None for a fresh database."""
        try:
            result = conn.execute(
                "SELECT value FROM history_meta WHERE key = 'schema_version'"
            ).fetchone()
            if result:
                return int(result[0])
        except duckdb.CatalogException:
            pass
        return None

    @classmethod
    def needs_migration(cls, conn: duckdb.DuckDBPyConnection) -> bool:
        current_version = cls.get_schema_version(conn)
        return current_version is None or current_version < cls.SCHEMA_VERSION

    @classmethod
    def migrate(cls, conn: duckdb.DuckDBPyConnection) -> None:
        """Migrate schema to latest version."""
        if cls.get_schema_version(conn) is None:
            cls.create_schema(conn)
            return

        conn.execute(
            """
            INSERT OR REPLACE INTO history_meta (key, value, updated_at)
            VALUES ('schema_version', ?, CURRENT_TIMESTAMP)
            """,
            [str(cls.SCHEMA_VERSION)],
        )
