"""Typed failures raised by the catalog and the loan engine.

Every error carries a stable ``code`` so the REST and CLI layers can report it
without parsing messages. ``status_code`` is the HTTP status the API binds it
to.
"""
from __future__ import annotations


class CirculationError(Exception):
    code = "circulation_error"
    status_code = 400
    default_message = "Circulation request refused."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


# --- Precondition violations (400) --- #

class BookUnavailable(CirculationError):
    code = "book_unavailable"
    default_message = "Book is not available for loan."


class PatronInactive(CirculationError):
    code = "patron_inactive"
    default_message = "Member account is not active."


class PatronHasOverdueItems(CirculationError):
    code = "patron_has_overdue_items"
    default_message = "Member has overdue items."


class InventoryExhausted(CirculationError):
    code = "inventory_exhausted"
    default_message = "No available copies left to lend."


class InventoryOverflow(CirculationError):
    code = "inventory_overflow"
    default_message = "Available copies would exceed total copies."


class RenewalLimitExceeded(CirculationError):
    code = "renewal_limit_exceeded"
    default_message = "Maximum renewals reached."


class LoanNotActive(CirculationError):
    code = "loan_not_active"
    default_message = "Loan is not active."


class BookHasActiveLoans(CirculationError):
    code = "book_has_active_loans"
    default_message = "Cannot delete book with active loans."


# --- Missing rows (404) --- #

class NotFoundError(CirculationError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."


class BookNotFound(NotFoundError):
    code = "book_not_found"
    default_message = "Book not found."


class LoanNotFound(NotFoundError):
    code = "loan_not_found"
    default_message = "Loan not found."


class MemberNotFound(NotFoundError):
    code = "member_not_found"
    default_message = "Member not found."


class AuthorNotFound(NotFoundError):
    code = "author_not_found"
    default_message = "Author not found."


class PublisherNotFound(NotFoundError):
    code = "publisher_not_found"
    default_message = "Publisher not found."


# --- Storage (409) --- #

class TransactionConflict(CirculationError):
    """The write lock could not be obtained in time. Safe for the caller to retry."""

    code = "transaction_conflict"
    status_code = 409
    default_message = "Database is busy, please retry."
