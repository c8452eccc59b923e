"""
SQLite handle for the canonical deck and flashcard tables.
"""

import sqlite3
import threading
from contextlib import contextmanager
from typing import Generator, Optional

from .config import DB_PATH, ensure_db_directory

SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS decks (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        source TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS flashcards (
        id TEXT PRIMARY KEY,
        deck_id TEXT NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
        question TEXT NOT NULL,
        answer TEXT NOT NULL,
        metadata TEXT,
        index_state TEXT NOT NULL DEFAULT 'unindexed',
        indexed_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    ''',
    # Decks deleted from SQLite whose vector records are not yet confirmed gone
    '''
    CREATE TABLE IF NOT EXISTS index_purges (
        deck_id TEXT PRIMARY KEY,
        card_count INTEGER NOT NULL DEFAULT 0,
        requested_at TEXT NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_decks_created_at ON decks(created_at DESC)',
    'CREATE INDEX IF NOT EXISTS idx_flashcards_deck_id ON flashcards(deck_id, created_at DESC)',
    'CREATE INDEX IF NOT EXISTS idx_flashcards_index_state ON flashcards(index_state)',
]

REQUIRED_TABLES = ('decks', 'flashcards', 'index_purges')


class Database:
    """Explicit handle to the relational store.

    Constructed once at process start and passed to every component that
    needs it. Each unit of work gets its own short-lived connection, so the
    handle is safe to share across request threads.
    """

    def __init__(self, path: str = None):
        self.path = path or DB_PATH
        self._closed = False
        self._init_lock = threading.Lock()

    def open(self) -> "Database":
        """Create the directory and the schema. Idempotent."""
        ensure_db_directory(self.path)
        with self._init_lock:
            self._closed = False
            self.init_db()
        return self

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def get_db(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a SQLite connection with foreign keys enforced."""
        if self._closed:
            raise sqlite3.ProgrammingError("Database handle is closed")

        conn = sqlite3.connect(self.path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Run a unit of work in one transaction; commit on success, roll back on any error."""
        with self.get_db() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    def init_db(self):
        """Initialize the database with required tables."""
        with self.get_db() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            cursor = conn.cursor()
            for statement in SCHEMA:
                cursor.execute(statement)
            conn.commit()

    def health_check(self) -> bool:
        """Check database health."""
        try:
            with self.get_db() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
                table_names = [row[0] for row in cursor.fetchall()]
                return all(table in table_names for table in REQUIRED_TABLES)
        except sqlite3.Error:
            return False


def open_database(path: Optional[str] = None) -> Database:
    """Construct and open a database handle."""
    return Database(path).open()
