"""Loan record and the rules for moving it between states.

A loan is ``active`` until it is returned. ``overdue`` is derived: an active
loan whose due date has passed reads as overdue, whether or not the stored
row has been swept yet. ``returned`` is terminal.

Everything here is pure; the orchestrator in ``loans.py`` persists the result.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional

from library_app.errors import LoanNotActive, RenewalLimitExceeded

MAX_LOAN_DAYS = 365
RENEWAL_DAYS = 14
MAX_RENEWALS = 2
FINE_PER_DAY = Decimal("0.50")

_CENTS = Decimal("0.01")


class LoanStatus(str, Enum):
    ACTIVE = "active"
    OVERDUE = "overdue"
    RETURNED = "returned"


OPEN_STATUSES = (LoanStatus.ACTIVE, LoanStatus.OVERDUE)


def effective_status(status: str, due_date: date, today: date) -> LoanStatus:
    """Status as of ``today``: a stale ``active`` past its due date is overdue."""
    status = LoanStatus(status)
    if status is LoanStatus.ACTIVE and due_date < today:
        return LoanStatus.OVERDUE
    return status


def compute_fine(due_date: date, return_date: date) -> Decimal:
    """Whole days late times the daily rate; zero when on time."""
    days_late = (return_date - due_date).days
    if days_late <= 0:
        return Decimal("0.00")
    return (FINE_PER_DAY * days_late).quantize(_CENTS, rounding=ROUND_HALF_UP)


def renewed_due_date(due_date: date) -> date:
    # Extends from the current due date, not from today
    return due_date + timedelta(days=RENEWAL_DAYS)


def _parse_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass
class Loan:
    id: Optional[int]
    user_id: int
    book_id: int
    loan_date: date
    due_date: date
    return_date: Optional[date] = None
    renewal_count: int = 0
    status: LoanStatus = LoanStatus.ACTIVE
    fine: Decimal = Decimal("0.00")
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    # Joined display fields
    book_title: Optional[str] = None
    member_name: Optional[str] = None

    def status_on(self, today: date) -> LoanStatus:
        return effective_status(self.status, self.due_date, today)

    def is_overdue(self, today: date) -> bool:
        return self.status_on(today) is LoanStatus.OVERDUE

    def days_overdue(self, today: date) -> int:
        if self.status is LoanStatus.RETURNED:
            return 0
        return max((today - self.due_date).days, 0)

    def mark_returned(self, return_date: date) -> Decimal:
        """Close the loan and settle its fine.

        The fine is computed from the due date alone, so a loan whose stored
        status is still ``active`` is charged the same as a swept one.
        """
        if self.status not in OPEN_STATUSES:
            raise LoanNotActive(f"Loan {self.id} has already been returned.")
        if return_date < self.loan_date:
            raise ValueError("Return date cannot be before the loan date.")
        self.fine = compute_fine(self.due_date, return_date)
        self.return_date = return_date
        self.status = LoanStatus.RETURNED
        return self.fine

    def renew(self, today: date) -> date:
        if self.status is LoanStatus.RETURNED:
            raise LoanNotActive(f"Loan {self.id} is returned and cannot be renewed.")
        # The cap wins over the overdue check
        if self.renewal_count >= MAX_RENEWALS:
            raise RenewalLimitExceeded(
                f"Loan {self.id} has already been renewed {self.renewal_count} times."
            )
        current = self.status_on(today)
        if current is not LoanStatus.ACTIVE:
            raise LoanNotActive(f"Loan {self.id} is {current.value} and cannot be renewed.")
        self.renewal_count += 1
        self.due_date = renewed_due_date(self.due_date)
        return self.due_date

    def to_dict(self, today: Optional[date] = None) -> Dict[str, Any]:
        status = self.status_on(today) if today else LoanStatus(self.status)
        return {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "book_title": self.book_title,
            "member_name": self.member_name,
            "loan_date": self.loan_date.isoformat(),
            "due_date": self.due_date.isoformat(),
            "return_date": self.return_date.isoformat() if self.return_date else None,
            "renewal_count": self.renewal_count,
            "status": status.value,
            "fine": str(self.fine),
            "days_overdue": self.days_overdue(today) if today else 0,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Loan":
        return Loan(
            id=data.get("id"),
            user_id=data["user_id"],
            book_id=data["book_id"],
            loan_date=_parse_date(data["loan_date"]),
            due_date=_parse_date(data["due_date"]),
            return_date=_parse_date(data.get("return_date")),
            renewal_count=data.get("renewal_count") or 0,
            status=LoanStatus(data.get("status") or LoanStatus.ACTIVE),
            fine=Decimal(str(data.get("fine") or "0.00")),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            book_title=data.get("book_title"),
            member_name=data.get("member_name"),
        )
