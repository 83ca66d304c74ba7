"""
SQLite foundation for the place index.
One connection per operation; WAL mode so searches read a consistent snapshot
while writes are in flight.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from .config import get_db_path, get_db_timeout, ensure_db_directory


@contextmanager
def get_db(db_path: str = None, timeout: float = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path or get_db_path(), timeout=timeout or get_db_timeout())
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection, mode: str = "IMMEDIATE") -> Generator[sqlite3.Cursor, None, None]:
    """Run the block as one transaction, taking the write lock up front."""
    conn.isolation_level = None
    cursor = conn.cursor()
    cursor.execute(f"BEGIN {mode}")
    try:
        yield cursor
    except BaseException:
        cursor.execute("ROLLBACK")
        raise
    else:
        cursor.execute("COMMIT")


def init_db(db_path: str = None):
    """Initialize the database with required tables."""
    db_path = db_path or get_db_path()
    ensure_db_directory(db_path)

    with get_db(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")

        # description is the indexed text; embedding is a float32 blob
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS locations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL DEFAULT '',
                category TEXT NOT NULL DEFAULT '',
                description TEXT NOT NULL,
                latitude REAL,
                longitude REAL,
                image_urls TEXT NOT NULL DEFAULT '[]',
                visit_dates TEXT NOT NULL DEFAULT '[]',
                embedding BLOB NOT NULL,
                embedding_dim INTEGER NOT NULL,
                text_fingerprint TEXT NOT NULL,
                model_version TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_locations_category ON locations(category)')

        conn.commit()


def health_check(db_path: str = None):
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return 'locations' in table_names
    except sqlite3.Error:
        return False
