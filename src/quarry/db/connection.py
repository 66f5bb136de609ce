"""SQLite connection layer with sqlite-vec extension.

One connection is shared by the CLI and by scheduler worker threads. A
sqlite3 connection has a single open transaction, so a ``commit()`` from one
thread would also commit whatever another thread has half-written. Every
execute-and-commit unit in the repositories therefore runs under the
connection's ``lock``.
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

import sqlite_vec


class LockedConnection(sqlite3.Connection):
    """sqlite3 connection carrying the lock that serialises its transactions.

    The lock is re-entrant so a unit of work may call helpers that take it
    again (e.g. lazy table creation inside an upsert).
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.lock = threading.RLock()


class Database:
    """Per-deployment SQLite database with sqlite-vec vector search support."""

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
        """
        self.db_path = Path(db_path)
        self._conn: LockedConnection | None = None

    def connect(self) -> LockedConnection:
        """Open a connection, load sqlite-vec, and return the connection.

        The connection may be handed to other threads; callers hold
        ``conn.lock`` around each statement group that ends in a commit.
        """
        conn = sqlite3.connect(
            self.db_path, check_same_thread=False, factory=LockedConnection
        )
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> LockedConnection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None
