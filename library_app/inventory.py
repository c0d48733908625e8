"""Copy-count ledger for books.

All functions take a connection that is already inside ``transaction()``; the
write lock it holds is what serializes concurrent loans on the same book.
Each update is a single guarded statement, so the row never passes through a
state that breaks ``0 <= available_copies <= total_copies``.
"""
from __future__ import annotations

import logging
import sqlite3

from library_app.book import AVAILABLE, CHECKED_OUT, MISSING
from library_app.errors import BookNotFound, InventoryExhausted, InventoryOverflow

logger = logging.getLogger(__name__)


def derive_status(available_copies: int, current_status: str | None = None) -> str:
    # "missing" is an administrative override and survives copy changes
    if current_status == MISSING:
        return MISSING
    return CHECKED_OUT if available_copies <= 0 else AVAILABLE


def lock_book(conn: sqlite3.Connection, book_id: int) -> sqlite3.Row:
    """Read the book row under the transaction's write lock."""
    row = conn.execute(
        "SELECT id, total_copies, available_copies, status FROM books WHERE id = ?",
        (book_id,),
    ).fetchone()
    if row is None:
        raise BookNotFound(f"Book {book_id} not found.")
    return row


def decrement_available(conn: sqlite3.Connection, book_id: int) -> int:
    """Take one copy off the shelf. Returns the new available count."""
    cursor = conn.execute(
        """
        UPDATE books
        SET available_copies = available_copies - 1,
            status = CASE
                WHEN status = 'missing' THEN status
                WHEN available_copies - 1 = 0 THEN 'checked_out'
                ELSE 'available'
            END,
            updated_at = CURRENT_TIMESTAMP
        WHERE id = ? AND available_copies > 0
        """,
        (book_id,),
    )
    if cursor.rowcount == 0:
        lock_book(conn, book_id)
        raise InventoryExhausted(f"Book {book_id} has no available copies.")
    available = lock_book(conn, book_id)["available_copies"]
    logger.debug("Book %s decremented to %s available", book_id, available)
    return available


def increment_available(conn: sqlite3.Connection, book_id: int) -> int:
    """Put one copy back on the shelf. Returns the new available count."""
    cursor = conn.execute(
        """
        UPDATE books
        SET available_copies = available_copies + 1,
            status = CASE WHEN status = 'missing' THEN status ELSE 'available' END,
            updated_at = CURRENT_TIMESTAMP
        WHERE id = ? AND available_copies < total_copies
        """,
        (book_id,),
    )
    if cursor.rowcount == 0:
        lock_book(conn, book_id)
        raise InventoryOverflow(f"Book {book_id} already has every copy on the shelf.")
    available = lock_book(conn, book_id)["available_copies"]
    logger.debug("Book %s incremented to %s available", book_id, available)
    return available


def set_total_copies(conn: sqlite3.Connection, book_id: int, total_copies: int) -> int:
    """Change a book's total while keeping the copies on loan on loan.

    Returns the new available count.
    """
    if total_copies < 0:
        raise ValueError("Total copies cannot be negative.")
    row = lock_book(conn, book_id)
    on_loan = row["total_copies"] - row["available_copies"]
    if total_copies < on_loan:
        raise ValueError(
            f"Total copies cannot drop below the {on_loan} copies currently on loan."
        )
    available = total_copies - on_loan
    conn.execute(
        """
        UPDATE books
        SET total_copies = ?, available_copies = ?, status = ?, updated_at = CURRENT_TIMESTAMP
        WHERE id = ?
        """,
        (total_copies, available, derive_status(available, row["status"]), book_id),
    )
    logger.info("Book %s total copies set to %s (%s available)", book_id, total_copies, available)
    return available
