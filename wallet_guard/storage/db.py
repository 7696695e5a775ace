"""
SQLite connection factory for the billing store.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "wallet_guard.db"


def get_connection(db_path: str = DEFAULT_DB_PATH, timeout: float = 5.0) -> sqlite3.Connection:
    """Open a connection suited to many short concurrent billing writes.

    WAL mode lets readers (history, reconciliation) proceed while one writer
    holds the lock; writers wait up to timeout seconds for each other.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait on a locked database before failing

    Returns:
        Open SQLite connection
    """
    conn = sqlite3.connect(str(Path(db_path)), timeout=timeout)
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn
