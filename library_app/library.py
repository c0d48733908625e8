import logging
import sqlite3
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from library_app import inventory
from library_app.book import BOOK_STATUSES, MISSING, Book
from library_app.database import get_db_connection, initialize_database, resolve_db_file, transaction
from library_app.errors import AuthorNotFound, BookHasActiveLoans, PublisherNotFound
from library_app.loans import Circulation
from library_app.models import MEMBERSHIP_TYPES, ROLES, Author, Member, Publisher
from library_app.utils.validators import ISBNValidator, TextValidator

logger = logging.getLogger(__name__)

_BOOK_SELECT = """
    SELECT b.id, b.title, b.isbn, b.author_id, b.publisher_id, b.genre,
           b.publication_year, b.description, b.total_copies, b.available_copies,
           b.status, b.created_at, b.updated_at,
           a.name AS author_name, p.name AS publisher_name
    FROM books b
    LEFT JOIN authors a ON a.id = b.author_id
    LEFT JOIN publishers p ON p.id = b.publisher_id
"""


class Library:
    """Manages the catalog (books, authors, publishers, members) and its loans."""

    def __init__(self, db_file: Optional[str] = None,
                 clock: Optional[Callable[[], date]] = None) -> None:
        self.db_file = resolve_db_file(db_file)
        # Make sure the schema is current on every start
        initialize_database(self.db_file)
        self.loans = Circulation(self.db_file, clock=clock)

    def close(self) -> None:
        """Connections are opened per call; nothing to release."""

    # ------------------------- Authors ------------------------- #
    def add_author(self, name: str, nationality: Optional[str] = None,
                   date_of_birth: Optional[str] = None, biography: Optional[str] = None) -> Author:
        if not TextValidator.validate_name(name):
            raise ValueError("Author name cannot be empty.")
        with transaction(self.db_file) as conn:
            cursor = conn.execute(
                "INSERT INTO authors (name, nationality, date_of_birth, biography) VALUES (?, ?, ?, ?)",
                (name.strip(), nationality, date_of_birth, biography),
            )
            author_id = cursor.lastrowid
        return self.get_author(author_id)

    def get_author(self, author_id: int) -> Optional[Author]:
        row = self._fetchone("SELECT * FROM authors WHERE id = ?", (author_id,))
        return Author.from_dict(dict(row)) if row else None

    def list_authors(self) -> List[Author]:
        rows = self._fetchall("SELECT * FROM authors ORDER BY name")
        return [Author.from_dict(dict(row)) for row in rows]

    def search_authors(self, query: str) -> List[Author]:
        rows = self._fetchall(
            "SELECT * FROM authors WHERE name LIKE ? OR biography LIKE ? ORDER BY name",
            (f"%{query}%", f"%{query}%"),
        )
        return [Author.from_dict(dict(row)) for row in rows]

    # ------------------------- Publishers ------------------------- #
    def add_publisher(self, name: str, address: Optional[str] = None,
                      website: Optional[str] = None, email: Optional[str] = None) -> Publisher:
        if not TextValidator.validate_name(name):
            raise ValueError("Publisher name cannot be empty.")
        if email is not None and not TextValidator.validate_email(email):
            raise ValueError(f"Invalid email address: {email}")
        try:
            with transaction(self.db_file) as conn:
                cursor = conn.execute(
                    "INSERT INTO publishers (name, address, website, email) VALUES (?, ?, ?, ?)",
                    (name.strip(), address, website, email),
                )
                publisher_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Publisher with email {email} already exists.") from e
        return self.get_publisher(publisher_id)

    def get_publisher(self, publisher_id: int) -> Optional[Publisher]:
        row = self._fetchone("SELECT * FROM publishers WHERE id = ?", (publisher_id,))
        return Publisher.from_dict(dict(row)) if row else None

    def list_publishers(self) -> List[Publisher]:
        rows = self._fetchall("SELECT * FROM publishers ORDER BY name")
        return [Publisher.from_dict(dict(row)) for row in rows]

    # ------------------------- Books ------------------------- #
    def add_book(self, book: Book) -> Book:
        """Catalogue a pre-constructed Book. Prevent duplicates by ISBN."""
        if not TextValidator.validate_title(book.title):
            raise ValueError("Title cannot be empty.")
        if book.total_copies < 0:
            raise ValueError("Total copies cannot be negative.")
        if book.isbn:
            book.isbn = ISBNValidator.normalize_isbn(book.isbn)
            if not ISBNValidator.is_valid_isbn(book.isbn):
                raise ValueError(f"Invalid ISBN: {book.isbn}")
            if self.find_book_by_isbn(book.isbn):
                raise ValueError(f"Book with ISBN {book.isbn} already exists.")
        if book.author_id is not None and self.get_author(book.author_id) is None:
            raise AuthorNotFound(f"Author {book.author_id} not found.")
        if book.publisher_id is not None and self.get_publisher(book.publisher_id) is None:
            raise PublisherNotFound(f"Publisher {book.publisher_id} not found.")

        available = book.total_copies
        try:
            with transaction(self.db_file) as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO books (
                        title, isbn, author_id, publisher_id, genre, publication_year,
                        description, total_copies, available_copies, status
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        book.title, book.isbn, book.author_id, book.publisher_id, book.genre,
                        book.publication_year, book.description, book.total_copies, available,
                        inventory.derive_status(available),
                    ),
                )
                book_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Book with ISBN {book.isbn} already exists.") from e
        logger.info("Catalogued book %s: %s (%s copies)", book_id, book.title, book.total_copies)
        return self.find_book(book_id)

    def find_book(self, book_id: int) -> Optional[Book]:
        row = self._fetchone(f"{_BOOK_SELECT} WHERE b.id = ?", (book_id,))
        return Book.from_dict(dict(row)) if row else None

    def find_book_by_isbn(self, isbn: str) -> Optional[Book]:
        norm = ISBNValidator.normalize_isbn(isbn)
        row = self._fetchone(f"{_BOOK_SELECT} WHERE b.isbn = ?", (norm,))
        return Book.from_dict(dict(row)) if row else None

    def list_books(self, genre: Optional[str] = None, status: Optional[str] = None,
                   author_id: Optional[int] = None, publisher_id: Optional[int] = None,
                   search: Optional[str] = None, limit: Optional[int] = None,
                   offset: int = 0) -> List[Book]:
        """List books ordered by title, optionally filtered and paginated."""
        where, params = self._book_filters(genre, status, author_id, publisher_id, search)
        sql = f"{_BOOK_SELECT}{where} ORDER BY b.title, b.id"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params = params + [limit, offset]
        return [Book.from_dict(dict(row)) for row in self._fetchall(sql, params)]

    def count_books(self, genre: Optional[str] = None, status: Optional[str] = None,
                    author_id: Optional[int] = None, publisher_id: Optional[int] = None,
                    search: Optional[str] = None) -> int:
        where, params = self._book_filters(genre, status, author_id, publisher_id, search)
        return self._fetchone(f"SELECT COUNT(*) FROM books b{where}", params)[0]

    def update_book(self, book_id: int, *, title: Optional[str] = None,
                    genre: Optional[str] = None, description: Optional[str] = None,
                    publication_year: Optional[int] = None,
                    total_copies: Optional[int] = None,
                    status: Optional[str] = None) -> Optional[Book]:
        """Edit a book. Returns the updated book, or None if it does not exist.

        ``status`` only sets or clears the ``missing`` override; any other value
        re-derives the status from the available copies.
        """
        fields: Dict[str, Any] = {}
        if title is not None:
            if not TextValidator.validate_title(title):
                raise ValueError("Title cannot be empty.")
            fields["title"] = title.strip()
        if genre is not None:
            fields["genre"] = genre
        if description is not None:
            fields["description"] = description
        if publication_year is not None:
            fields["publication_year"] = publication_year
        if status is not None and status not in BOOK_STATUSES:
            raise ValueError(f"Invalid status. Allowed: {', '.join(BOOK_STATUSES)}")
        if not fields and total_copies is None and status is None:
            raise ValueError("Nothing to update.")

        with transaction(self.db_file) as conn:
            row = conn.execute("SELECT id FROM books WHERE id = ?", (book_id,)).fetchone()
            if row is None:
                return None
            if fields:
                set_clause = ", ".join(f"{name} = ?" for name in fields)
                conn.execute(
                    f"UPDATE books SET {set_clause}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    list(fields.values()) + [book_id],
                )
            if total_copies is not None:
                inventory.set_total_copies(conn, book_id, total_copies)
            if status is not None:
                current = inventory.lock_book(conn, book_id)
                new_status = MISSING if status == MISSING else inventory.derive_status(
                    current["available_copies"]
                )
                conn.execute(
                    "UPDATE books SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (new_status, book_id),
                )
                logger.info("Book %s status set to %s", book_id, new_status)
        return self.find_book(book_id)

    def remove_book(self, book_id: int) -> bool:
        """Delete a book with no loan history. Returns False if it does not exist."""
        with transaction(self.db_file) as conn:
            row = conn.execute("SELECT id FROM books WHERE id = ?", (book_id,)).fetchone()
            if row is None:
                return False
            open_loans, history = conn.execute(
                """
                SELECT SUM(CASE WHEN status IN ('active', 'overdue') THEN 1 ELSE 0 END), COUNT(*)
                FROM loans WHERE book_id = ?
                """,
                (book_id,),
            ).fetchone()
            if open_loans:
                raise BookHasActiveLoans(f"Book {book_id} has {open_loans} loan(s) out.")
            if history:
                # Loans are kept as an audit trail
                raise ValueError(
                    f"Book {book_id} has loan history; mark it missing instead of deleting it."
                )
            conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        logger.info("Removed book %s", book_id)
        return True

    # ------------------------- Members ------------------------- #
    def add_member(self, email: str, first_name: Optional[str] = None,
                   last_name: Optional[str] = None, role: str = "patron",
                   membership_type: str = "standard") -> Member:
        if not TextValidator.validate_email(email):
            raise ValueError(f"Invalid email address: {email}")
        self._check_member_fields(role, membership_type)
        try:
            with transaction(self.db_file) as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO users (email, first_name, last_name, role, membership_type, is_active)
                    VALUES (?, ?, ?, ?, ?, 1)
                    """,
                    (email.strip().lower(), first_name, last_name, role, membership_type),
                )
                member_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Member with email {email} already exists.") from e
        logger.info("Registered member %s (%s)", member_id, role)
        return self.get_member(member_id)

    def get_member(self, member_id: int) -> Optional[Member]:
        row = self._fetchone("SELECT * FROM users WHERE id = ?", (member_id,))
        return Member.from_dict(dict(row)) if row else None

    def list_members(self, is_active: Optional[bool] = None,
                     membership_type: Optional[str] = None,
                     search: Optional[str] = None) -> List[Member]:
        clauses: List[str] = []
        params: list = []
        if is_active is not None:
            clauses.append("is_active = ?")
            params.append(1 if is_active else 0)
        if membership_type:
            clauses.append("membership_type = ?")
            params.append(membership_type)
        if search:
            clauses.append("(first_name LIKE ? OR last_name LIKE ? OR email LIKE ?)")
            params += [f"%{search}%"] * 3
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(f"SELECT * FROM users{where} ORDER BY first_name, last_name, id", params)
        return [Member.from_dict(dict(row)) for row in rows]

    def update_member(self, member_id: int, *, first_name: Optional[str] = None,
                      last_name: Optional[str] = None, role: Optional[str] = None,
                      membership_type: Optional[str] = None,
                      is_active: Optional[bool] = None) -> Optional[Member]:
        fields: Dict[str, Any] = {}
        if first_name is not None:
            fields["first_name"] = first_name
        if last_name is not None:
            fields["last_name"] = last_name
        if role is not None:
            fields["role"] = role
        if membership_type is not None:
            fields["membership_type"] = membership_type
        if is_active is not None:
            fields["is_active"] = 1 if is_active else 0
        if not fields:
            raise ValueError("Nothing to update.")
        self._check_member_fields(fields.get("role"), fields.get("membership_type"))

        set_clause = ", ".join(f"{name} = ?" for name in fields)
        with transaction(self.db_file) as conn:
            cursor = conn.execute(
                f"UPDATE users SET {set_clause}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                list(fields.values()) + [member_id],
            )
            if cursor.rowcount == 0:
                return None
        return self.get_member(member_id)

    def deactivate_member(self, member_id: int) -> Optional[Member]:
        member = self.update_member(member_id, is_active=False)
        if member:
            logger.info("Deactivated member %s", member_id)
        return member

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _check_member_fields(role: Optional[str], membership_type: Optional[str]) -> None:
        if role is not None and role not in ROLES:
            raise ValueError(f"Invalid role. Allowed: {', '.join(ROLES)}")
        if membership_type is not None and membership_type not in MEMBERSHIP_TYPES:
            raise ValueError(f"Invalid membership type. Allowed: {', '.join(MEMBERSHIP_TYPES)}")

    @staticmethod
    def _book_filters(genre, status, author_id, publisher_id, search) -> Tuple[str, list]:
        clauses: List[str] = []
        params: list = []
        if genre:
            clauses.append("b.genre = ?")
            params.append(genre)
        if status:
            clauses.append("b.status = ?")
            params.append(status)
        if author_id is not None:
            clauses.append("b.author_id = ?")
            params.append(author_id)
        if publisher_id is not None:
            clauses.append("b.publisher_id = ?")
            params.append(publisher_id)
        if search:
            clauses.append("(b.title LIKE ? OR b.isbn LIKE ?)")
            params += [f"%{search}%", f"%{search}%"]
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def _fetchone(self, sql: str, params=()) -> Optional[sqlite3.Row]:
        conn = get_db_connection(self.db_file)
        try:
            return conn.execute(sql, params).fetchone()
        finally:
            conn.close()

    def _fetchall(self, sql: str, params=()) -> List[sqlite3.Row]:
        conn = get_db_connection(self.db_file)
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()
