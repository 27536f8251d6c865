"""
Repository pattern for data access.

Stores the monitor's durable key/value settings in SQLite.
"""

from typing import Optional

from .db import DEFAULT_DB_PATH, get_connection


class SettingsRepository:
    """Key/value settings backed by a SQLite table.

    Errors from SQLite are not handled here; callers decide what a failed
    read or write means for them.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def get(self, key: str) -> Optional[str]:
        """Read a setting.

        Args:
            key: Setting name

        Returns:
            Stored string value, or None if the key (or table) is absent
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='monitor_setting'"
            )
            if cursor.fetchone() is None:
                return None
            cursor = conn.execute("SELECT value FROM monitor_setting WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def set(self, key: str, value: str) -> None:
        """Write a setting, replacing any previous value.

        Args:
            key: Setting name
            value: String value to store
        """
        initialize_schema(self.db_path)
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                "INSERT OR REPLACE INTO monitor_setting (key, value) VALUES (?, ?)",
                (key, value),
            )
            conn.commit()
        finally:
            conn.close()


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the monitor_setting table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS monitor_setting (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()
