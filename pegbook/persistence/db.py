"""
Database connection, transactions and initialization.
"""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from pegbook.config import Settings
from .schema import all_schema_sql


# Default DB path (project root / data / pegbook.db)
def _default_db_path() -> Path:
    return Path(__file__).resolve().parent.parent.parent / "data" / "pegbook.db"


_db_path: Path | None = None


def set_db_path(path: str | Path) -> None:
    """Set the database path. Call before first get_connection if not using default."""
    global _db_path
    _db_path = Path(path)


def get_db_path() -> Path:
    """Return the current database path (set_db_path > DATABASE_PATH > default)."""
    if _db_path is not None:
        return _db_path
    configured = Settings().database_path
    if configured:
        return Path(configured)
    return _default_db_path()


def get_connection(db_path: str | Path | None = None) -> sqlite3.Connection:
    """
    Return a new SQLite connection.
    One connection per request/thread; ensure close() is called.
    Writers wait up to DB_BUSY_TIMEOUT_SECONDS for the write lock.
    """
    path = Path(db_path) if db_path else get_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    # Autocommit: transactions are only ever opened explicitly by write_transaction.
    conn = sqlite3.connect(str(path), timeout=Settings().db_busy_timeout_seconds, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def write_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    Run the block as one atomic write (BEGIN IMMEDIATE ... COMMIT).
    Any exception rolls back every statement of the block and is re-raised.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()


def init_db(db_path: str | Path | None = None) -> None:
    """Create or ensure all tables exist. Switches the file to WAL so readers never block writers."""
    path = Path(db_path) if db_path else get_db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    try:
        conn.execute("PRAGMA journal_mode = WAL")
        conn.executescript(all_schema_sql())
        conn.commit()
    finally:
        conn.close()
