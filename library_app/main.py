import logging
import subprocess
import sys
from datetime import date
from functools import wraps
from typing import Optional

import typer

from library_app import database
from library_app.book import Book
from library_app.config import settings
from library_app.errors import CirculationError
from library_app.library import Library
from library_app.utils.ui_helpers import (
    BOOK_COLUMNS,
    LOAN_COLUMNS,
    MEMBER_COLUMNS,
    print_error,
    print_record,
    print_rows,
    set_output_mode,
)

logger = logging.getLogger(__name__)


class LibraryManager:
    """Holds one Library per database file for the life of the process."""

    _instance: Optional[Library] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def get_instance(cls) -> Library:
        current_db = database.resolve_db_file()
        # Rebuild when the database file changes (e.g. per-test databases)
        if cls._instance is None or current_db != cls._db_file_snapshot:
            cls._instance = Library(current_db)
            cls._db_file_snapshot = current_db
        return cls._instance


def handle_errors(func):
    """Report refused operations as an error message and exit code 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (CirculationError, ValueError) as e:
            print_error(str(e))
            raise typer.Exit(code=1)
    return wrapper


# --- Typer CLI application ---
app = typer.Typer(help="Library circulation CLI")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
):
    """Global CLI options (output mode, verbosity)."""
    logging.basicConfig(level=logging.DEBUG if verbose else getattr(logging, settings.log_level, logging.INFO))
    if output:
        set_output_mode(output)


# --- Catalog ---
@app.command("books")
def cli_books(
    genre: Optional[str] = typer.Option(None, "--genre", "-g", help="Filter by genre"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="available | checked_out | missing"),
    search: Optional[str] = typer.Option(None, "--search", "-q", help="Match title or ISBN"),
):
    """List books in the catalog."""
    lib = LibraryManager.get_instance()
    books = lib.list_books(genre=genre, status=status, search=search)
    print_rows("books", [b.to_dict() for b in books], BOOK_COLUMNS, "No books in library.")


@app.command("add-book")
@handle_errors
def cli_add_book(
    title: str,
    isbn: Optional[str] = typer.Option(None, "--isbn", help="ISBN-10 or ISBN-13"),
    copies: int = typer.Option(1, "--copies", "-c", help="Number of physical copies"),
    author_id: Optional[int] = typer.Option(None, "--author-id"),
    publisher_id: Optional[int] = typer.Option(None, "--publisher-id"),
    genre: Optional[str] = typer.Option(None, "--genre"),
    year: Optional[int] = typer.Option(None, "--year", help="Publication year"),
):
    """Add a book to the catalog."""
    lib = LibraryManager.get_instance()
    book = lib.add_book(Book(title=title, isbn=isbn, total_copies=copies, author_id=author_id,
                             publisher_id=publisher_id, genre=genre, publication_year=year))
    print(f"Successfully added: {book.title} (id {book.id}, {book.total_copies} copies)")


@app.command("find")
def cli_find(book_id: int):
    """Show a single book."""
    lib = LibraryManager.get_instance()
    book = lib.find_book(book_id)
    if not book:
        print(f"Book with id {book_id} not found.")
        return
    print_record("books", book.to_dict())


# --- Members ---
@app.command("members")
def cli_members(
    all_members: bool = typer.Option(False, "--all", "-a", help="Include inactive members"),
    search: Optional[str] = typer.Option(None, "--search", "-q"),
):
    """List members."""
    lib = LibraryManager.get_instance()
    members = lib.list_members(is_active=None if all_members else True, search=search)
    print_rows("members", [m.to_dict() for m in members], MEMBER_COLUMNS, "No members found.")


@app.command("add-member")
@handle_errors
def cli_add_member(
    email: str,
    first_name: Optional[str] = typer.Option(None, "--first-name", "-f"),
    last_name: Optional[str] = typer.Option(None, "--last-name", "-l"),
    membership: str = typer.Option("standard", "--membership", "-m", help="standard | premium | student"),
    role: str = typer.Option("patron", "--role", help="patron | staff"),
):
    """Register a new member."""
    lib = LibraryManager.get_instance()
    member = lib.add_member(email, first_name=first_name, last_name=last_name,
                            role=role, membership_type=membership)
    print(f"Registered member {member.id}: {member.email}")


@app.command("deactivate")
def cli_deactivate(member_id: int):
    """Deactivate a member account."""
    lib = LibraryManager.get_instance()
    if lib.deactivate_member(member_id):
        print(f"Member {member_id} has been deactivated.")
    else:
        print(f"Member {member_id} not found.")


# --- Loans ---
@app.command("borrow")
@handle_errors
def cli_borrow(
    user_id: int,
    book_id: int,
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Loan period in days"),
):
    """Lend a book to a member."""
    lib = LibraryManager.get_instance()
    loan = lib.loans.create_loan(user_id, book_id, days)
    print_record("loans", loan.to_dict(lib.loans.today()))


@app.command("return")
@handle_errors
def cli_return(
    loan_id: int,
    on: Optional[str] = typer.Option(None, "--date", help="Return date (YYYY-MM-DD), default today"),
):
    """Return a loaned book and settle any fine."""
    lib = LibraryManager.get_instance()
    return_date = date.fromisoformat(on) if on else None
    loan = lib.loans.return_loan(loan_id, return_date)
    print_record("loans", loan.to_dict(lib.loans.today()))


@app.command("renew")
@handle_errors
def cli_renew(loan_id: int):
    """Renew a loan for another period."""
    lib = LibraryManager.get_instance()
    loan = lib.loans.renew_loan(loan_id)
    print_record("loans", loan.to_dict(lib.loans.today()))


@app.command("loans")
@handle_errors
def cli_loans(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="active | overdue | returned"),
    user_id: Optional[int] = typer.Option(None, "--user", "-u", help="Only this member's loans"),
    overdue: bool = typer.Option(False, "--overdue", help="Only overdue loans"),
):
    """List loans, newest first."""
    lib = LibraryManager.get_instance()
    loans, _ = lib.loans.list_loans(status=status, user_id=user_id, overdue=overdue)
    today = lib.loans.today()
    print_rows("loans", [l.to_dict(today) for l in loans], LOAN_COLUMNS, "No loans found.")


@app.command("sweep-overdue")
@handle_errors
def cli_sweep_overdue():
    """Mark active loans past their due date as overdue."""
    lib = LibraryManager.get_instance()
    changed = lib.loans.mark_overdue_loans()
    print(f"Marked {changed} loan(s) overdue.")


# --- Server ---
@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help=f"Default {settings.api_host}"),
    port: Optional[int] = typer.Option(None, "--port", help=f"Default {settings.api_port}"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the REST API with uvicorn."""
    host = host or settings.api_host
    port = port or settings.api_port
    print(f"Starting API on http://{host}:{port}")
    cmd = [sys.executable, "-m", "uvicorn", "library_app.api:app", "--host", host, "--port", str(port)]
    if reload:
        cmd.append("--reload")
    try:
        subprocess.run(cmd, check=False)
    except KeyboardInterrupt:
        print("Server stopped.")


if __name__ == "__main__":
    app()
