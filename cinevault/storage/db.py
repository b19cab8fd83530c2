"""SQLite connection management and schema for the catalog and status tables."""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS catalog_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT,
    stored_object_key TEXT NOT NULL,
    subtitle_object_key TEXT,
    metadata_id TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS movie_metadata (
    identifier TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    runtime_text TEXT,
    year TEXT,
    raw_json TEXT NOT NULL,
    fetched_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS upload_records (
    id TEXT PRIMARY KEY,
    original_name TEXT NOT NULL,
    stored_path TEXT NOT NULL,
    target_path TEXT,
    status TEXT NOT NULL,
    message TEXT,
    warnings_json TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_upload_records_status ON upload_records(status);
"""


@contextmanager
def get_connection(db_path: Union[str, Path], timeout: float = 30.0) -> Iterator[sqlite3.Connection]:
    """Open a connection with WAL and dict-like rows; commit on success.

    Raises:
        sqlite3.OperationalError: If the database is locked past ``timeout``.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), timeout=timeout)
    # Multiple readers, single writer
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.row_factory = sqlite3.Row

    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def initialize_database(db_path: Union[str, Path], timeout: float = 30.0) -> None:
    """Create tables if they do not exist yet."""
    with get_connection(db_path, timeout) as conn:
        conn.executescript(SCHEMA_SQL)
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
        )
    logger.debug(f"[Catalog] Schema ready at {db_path}")
