"""Loan orchestration: create, return and renew loans atomically.

Each operation runs its precondition checks and every write it makes inside
one ``transaction()``: the loan row and the book's copy count either change
together or not at all.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import date, timedelta
from typing import Callable, List, Optional, Tuple

from library_app import inventory
from library_app.book import MISSING
from library_app.config import settings
from library_app.database import get_db_connection, transaction
from library_app.errors import (
    BookUnavailable,
    CirculationError,
    LoanNotActive,
    LoanNotFound,
    MemberNotFound,
    PatronHasOverdueItems,
    PatronInactive,
)
from library_app.loan import MAX_LOAN_DAYS, Loan, LoanStatus

logger = logging.getLogger(__name__)

_LOAN_SELECT = """
    SELECT l.id, l.user_id, l.book_id, l.loan_date, l.due_date, l.return_date,
           l.renewal_count, l.status, l.fine, l.created_at, l.updated_at,
           b.title AS book_title,
           TRIM(COALESCE(u.first_name, '') || ' ' || COALESCE(u.last_name, '')) AS member_name
    FROM loans l
    LEFT JOIN books b ON b.id = l.book_id
    LEFT JOIN users u ON u.id = l.user_id
"""

# Open loans whose due date has passed, swept or not
_OVERDUE_CLAUSE = "(l.status = 'overdue' OR (l.status = 'active' AND l.due_date < ?))"


class Circulation:
    """Runs the loan lifecycle against one database file."""

    def __init__(self, db_file: Optional[str] = None,
                 clock: Optional[Callable[[], date]] = None) -> None:
        self.db_file = db_file
        self._clock = clock or date.today

    def today(self) -> date:
        return self._clock()

    # ------------------------- Lifecycle ------------------------- #
    def create_loan(self, user_id: int, book_id: int, loan_days: Optional[int] = None) -> Loan:
        """Lend one copy of ``book_id`` to ``user_id`` for ``loan_days`` days."""
        if loan_days is None:
            loan_days = settings.default_loan_days
        if (isinstance(loan_days, bool) or not isinstance(loan_days, int)
                or not 0 < loan_days <= MAX_LOAN_DAYS):
            raise ValueError(f"Loan days must be a whole number from 1 to {MAX_LOAN_DAYS}.")

        today = self.today()
        try:
            with transaction(self.db_file) as conn:
                book = inventory.lock_book(conn, book_id)
                if book["available_copies"] <= 0 or book["status"] == MISSING:
                    raise BookUnavailable(f"Book {book_id} is not available for loan.")

                member = conn.execute(
                    "SELECT id, is_active FROM users WHERE id = ?", (user_id,)
                ).fetchone()
                if member is None:
                    raise MemberNotFound(f"Member {user_id} not found.")
                if not member["is_active"]:
                    raise PatronInactive(f"Member {user_id} is not active.")

                overdue = conn.execute(
                    f"SELECT COUNT(*) FROM loans l WHERE l.user_id = ? AND {_OVERDUE_CLAUSE}",
                    (user_id, today.isoformat()),
                ).fetchone()[0]
                if overdue:
                    raise PatronHasOverdueItems(
                        f"Member {user_id} has {overdue} overdue item(s)."
                    )

                due_date = today + timedelta(days=loan_days)
                cursor = conn.execute(
                    """
                    INSERT INTO loans (user_id, book_id, loan_date, due_date, status, fine)
                    VALUES (?, ?, ?, ?, 'active', '0.00')
                    """,
                    (user_id, book_id, today.isoformat(), due_date.isoformat()),
                )
                inventory.decrement_available(conn, book_id)
                loan = self._fetch(conn, cursor.lastrowid, today)
        except CirculationError as e:
            logger.warning("Loan refused for member %s, book %s: %s", user_id, book_id, e)
            raise

        logger.info("Loan %s created: member %s, book %s, due %s",
                    loan.id, user_id, book_id, loan.due_date.isoformat())
        return loan

    def return_loan(self, loan_id: int, return_date: Optional[date] = None) -> Loan:
        """Close a loan, charge any fine and put the copy back on the shelf."""
        today = self.today()
        return_date = return_date or today
        try:
            with transaction(self.db_file) as conn:
                loan = self._fetch(conn, loan_id, today)
                fine = loan.mark_returned(return_date)
                cursor = conn.execute(
                    """
                    UPDATE loans
                    SET status = 'returned', return_date = ?, fine = ?,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND status IN ('active', 'overdue')
                    """,
                    (return_date.isoformat(), str(fine), loan_id),
                )
                if cursor.rowcount != 1:
                    raise LoanNotActive(f"Loan {loan_id} has already been returned.")
                inventory.increment_available(conn, loan.book_id)
                loan = self._fetch(conn, loan_id, today)
        except CirculationError as e:
            logger.warning("Return refused for loan %s: %s", loan_id, e)
            raise

        logger.info("Loan %s returned on %s, fine %s", loan_id, return_date.isoformat(), loan.fine)
        return loan

    def renew_loan(self, loan_id: int) -> Loan:
        """Push the due date back by one renewal period."""
        today = self.today()
        try:
            with transaction(self.db_file) as conn:
                loan = self._fetch(conn, loan_id, today)
                previous_count = loan.renewal_count
                loan.renew(today)
                cursor = conn.execute(
                    """
                    UPDATE loans
                    SET renewal_count = ?, due_date = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND status = 'active' AND renewal_count = ?
                    """,
                    (loan.renewal_count, loan.due_date.isoformat(), loan_id, previous_count),
                )
                if cursor.rowcount != 1:
                    raise LoanNotActive(f"Loan {loan_id} changed while renewing.")
                loan = self._fetch(conn, loan_id, today)
        except CirculationError as e:
            logger.warning("Renewal refused for loan %s: %s", loan_id, e)
            raise

        logger.info("Loan %s renewed (%s), now due %s",
                    loan_id, loan.renewal_count, loan.due_date.isoformat())
        return loan

    def mark_overdue_loans(self, today: Optional[date] = None) -> int:
        """Persist the overdue status for active loans past their due date.

        Idempotent: running it twice on the same day changes nothing the
        second time. Returns the number of loans updated.
        """
        today = today or self.today()
        with transaction(self.db_file) as conn:
            cursor = conn.execute(
                """
                UPDATE loans
                SET status = 'overdue', updated_at = CURRENT_TIMESTAMP
                WHERE status = 'active' AND due_date < ?
                """,
                (today.isoformat(),),
            )
            changed = cursor.rowcount
        if changed:
            logger.info("Marked %s loan(s) overdue as of %s", changed, today.isoformat())
        return changed

    # ------------------------- Read side ------------------------- #
    def get_loan(self, loan_id: int) -> Loan:
        conn = get_db_connection(self.db_file)
        try:
            return self._fetch(conn, loan_id, self.today())
        finally:
            conn.close()

    def list_loans(self, status: Optional[str] = None, user_id: Optional[int] = None,
                   overdue: bool = False, limit: Optional[int] = None,
                   offset: int = 0) -> Tuple[List[Loan], int]:
        """Loans matching the filters, newest first, plus the unpaginated total.

        ``status`` filters on the effective status, so ``"overdue"`` includes
        active loans that have not been swept yet.
        """
        today = self.today()
        clauses: List[str] = []
        params: list = []
        if overdue:
            status = LoanStatus.OVERDUE.value
        if status:
            status = LoanStatus(status)
            if status is LoanStatus.OVERDUE:
                clauses.append(_OVERDUE_CLAUSE)
                params.append(today.isoformat())
            elif status is LoanStatus.ACTIVE:
                clauses.append("(l.status = 'active' AND l.due_date >= ?)")
                params.append(today.isoformat())
            else:
                clauses.append("l.status = 'returned'")
        if user_id is not None:
            clauses.append("l.user_id = ?")
            params.append(user_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        conn = get_db_connection(self.db_file)
        try:
            total = conn.execute(f"SELECT COUNT(*) FROM loans l{where}", params).fetchone()[0]
            sql = f"{_LOAN_SELECT}{where} ORDER BY l.loan_date DESC, l.id DESC"
            page_params = list(params)
            if limit is not None:
                sql += " LIMIT ? OFFSET ?"
                page_params += [limit, offset]
            rows = conn.execute(sql, page_params).fetchall()
            return [self._to_loan(row, today) for row in rows], total
        finally:
            conn.close()

    def get_member_loans(self, user_id: int) -> List[Loan]:
        loans, _ = self.list_loans(user_id=user_id)
        return loans

    def get_overdue_loans(self) -> List[Loan]:
        today = self.today()
        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute(
                f"{_LOAN_SELECT} WHERE {_OVERDUE_CLAUSE} ORDER BY l.due_date, l.id",
                (today.isoformat(),),
            ).fetchall()
            return [self._to_loan(row, today) for row in rows]
        finally:
            conn.close()

    # ------------------------- Helpers ------------------------- #
    @staticmethod
    def _to_loan(row: sqlite3.Row, today: date) -> Loan:
        loan = Loan.from_dict(dict(row))
        loan.member_name = loan.member_name or None
        loan.status = loan.status_on(today)
        return loan

    def _fetch(self, conn: sqlite3.Connection, loan_id: int, today: date) -> Loan:
        row = conn.execute(f"{_LOAN_SELECT} WHERE l.id = ?", (loan_id,)).fetchone()
        if row is None:
            raise LoanNotFound(f"Loan {loan_id} not found.")
        return self._to_loan(row, today)
