"""
Database connection management.

Provides the SQLite connection backing the monitor's durable settings.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "cache_rate_monitor.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Missing parent directories are created so a fresh profile directory
    works on first use.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection
    """
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(str(path))
