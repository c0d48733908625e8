import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from dotenv import load_dotenv

from library_app.config import settings
from library_app.errors import TransactionConflict

# Make sure .env is loaded before the database path is read from the environment.
load_dotenv()

logger = logging.getLogger(__name__)

# Default database file. LIBRARY_DB_FILE overrides the configured path.
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE") or settings.database_file

_LOCK_MESSAGES = ("database is locked", "database is busy")


def resolve_db_file(db_file: Optional[str] = None) -> str:
    return db_file or os.environ.get("LIBRARY_DB_FILE") or DATABASE_FILE


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database.

    Connections run in autocommit mode; writes go through ``transaction()``,
    which issues its own BEGIN/COMMIT.
    """
    conn = sqlite3.connect(
        resolve_db_file(db_file),
        timeout=settings.db_busy_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    msg = str(exc).lower()
    return any(m in msg for m in _LOCK_MESSAGES)


@contextmanager
def transaction(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Run a block inside a write transaction.

    ``BEGIN IMMEDIATE`` takes the database write lock up front, so any row read
    inside the block cannot change under us before COMMIT. A writer that waits
    longer than the busy timeout gets ``TransactionConflict``; nothing is
    retried here.
    """
    conn = get_db_connection(db_file)
    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            if _is_lock_error(e):
                logger.warning("Could not acquire write lock: %s", e)
                raise TransactionConflict() from e
            raise
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            if isinstance(e, sqlite3.OperationalError) and _is_lock_error(e):
                logger.warning("Transaction aborted on lock contention: %s", e)
                raise TransactionConflict() from e
            raise
    finally:
        conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the schema if it does not exist yet."""
    conn = get_db_connection(db_file)
    try:
        # WAL lets readers proceed while a loan transaction holds the write lock
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS authors (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                nationality TEXT,
                date_of_birth TEXT,
                biography TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS publishers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                address TEXT,
                website TEXT,
                email TEXT UNIQUE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT UNIQUE NOT NULL,
                first_name TEXT,
                last_name TEXT,
                role TEXT NOT NULL DEFAULT 'patron'
                    CHECK (role IN ('patron', 'staff')),
                membership_type TEXT NOT NULL DEFAULT 'standard'
                    CHECK (membership_type IN ('standard', 'premium', 'student')),
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                isbn TEXT UNIQUE,
                author_id INTEGER REFERENCES authors(id) ON DELETE SET NULL,
                publisher_id INTEGER REFERENCES publishers(id) ON DELETE SET NULL,
                genre TEXT,
                publication_year INTEGER,
                description TEXT,
                total_copies INTEGER NOT NULL DEFAULT 1 CHECK (total_copies >= 0),
                available_copies INTEGER NOT NULL DEFAULT 1,
                status TEXT NOT NULL DEFAULT 'available'
                    CHECK (status IN ('available', 'checked_out', 'missing')),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                CHECK (available_copies >= 0 AND available_copies <= total_copies)
            );

            CREATE TABLE IF NOT EXISTS loans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id),
                book_id INTEGER NOT NULL REFERENCES books(id),
                loan_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                return_date TEXT,
                renewal_count INTEGER NOT NULL DEFAULT 0
                    CHECK (renewal_count >= 0 AND renewal_count <= 2),
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK (status IN ('active', 'overdue', 'returned')),
                fine TEXT NOT NULL DEFAULT '0.00',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                CHECK ((status = 'returned') = (return_date IS NOT NULL))
            );

            CREATE INDEX IF NOT EXISTS idx_books_title ON books(title);
            CREATE INDEX IF NOT EXISTS idx_books_genre_status ON books(genre, status);
            CREATE INDEX IF NOT EXISTS idx_books_author_title ON books(author_id, title);
            CREATE INDEX IF NOT EXISTS idx_authors_name ON authors(name);
            CREATE INDEX IF NOT EXISTS idx_users_active ON users(is_active);
            CREATE INDEX IF NOT EXISTS idx_loans_user_status ON loans(user_id, status);
            CREATE INDEX IF NOT EXISTS idx_loans_book_id ON loans(book_id);
            CREATE INDEX IF NOT EXISTS idx_loans_due_date ON loans(due_date);
        """)
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database, creating tables when needed."""
    create_tables(db_file)
    logger.debug("Database ready at %s", resolve_db_file(db_file))
