import logging
import os
import sqlite3
from typing import Optional

from bookfinder.config import settings

logger = logging.getLogger(__name__)

# Default database file. LIBRARY_DB_FILE overrides it through settings.
DATABASE_FILE = settings.database_file

STATUS_VALUES = ("to-read", "reading", "finished")
_STATUS_CHECK = ", ".join(f"'{s}'" for s in STATUS_VALUES)


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database, creating parent folders if needed."""
    path = db_file or DATABASE_FILE
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the tables and indexes if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        # No UNIQUE(owner_email, external_id): the same catalog book may be added twice
        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS book_entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                external_id TEXT NOT NULL,
                owner_email TEXT NOT NULL,
                title TEXT NOT NULL,
                authors TEXT NOT NULL,
                thumbnail TEXT,
                description TEXT DEFAULT '',
                published_date TEXT DEFAULT '',
                page_count INTEGER DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'to-read'
                    CHECK(status IN ({_STATUS_CHECK})),
                favourite INTEGER NOT NULL DEFAULT 0,
                notes TEXT NOT NULL DEFAULT '',
                added_at TEXT NOT NULL
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_entries_owner ON book_entries(owner_email)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_entries_owner_status ON book_entries(owner_email, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_entries_owner_added ON book_entries(owner_email, added_at)")
        conn.commit()
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Make sure the database file and its tables exist."""
    create_tables(db_file)
    logger.debug(f"Database ready at {db_file or DATABASE_FILE}")
