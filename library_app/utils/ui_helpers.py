import os
import json
from typing import Any, Dict, List, Sequence, Tuple
from rich.console import Console
from rich.table import Table

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

BOOK_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("id", "ID"), ("title", "Title"), ("author_name", "Author"),
    ("available_copies", "Available"), ("total_copies", "Total"), ("status", "Status"),
)
MEMBER_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("id", "ID"), ("full_name", "Name"), ("email", "Email"),
    ("membership_type", "Membership"), ("is_active", "Active"),
)
LOAN_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("id", "ID"), ("book_title", "Book"), ("member_name", "Member"), ("loan_date", "Loaned"),
    ("due_date", "Due"), ("status", "Status"), ("renewal_count", "Renewals"), ("fine", "Fine"),
)


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _plain_line(kind: str, row: Dict[str, Any]) -> str:
    if kind == "books":
        return (f"{row['id']} - {row['title']} "
                f"[{row['available_copies']}/{row['total_copies']} available, {row['status']}]")
    if kind == "members":
        state = "active" if row["is_active"] else "inactive"
        return f"{row['id']} - {row['full_name'] or '-'} <{row['email']}> ({state})"
    line = (f"{row['id']} - {row['book_title']} -> {row['member_name'] or row['user_id']} "
            f"due {row['due_date']} [{row['status']}]")
    if row.get("fine") and row["fine"] != "0.00":
        line += f" fine {row['fine']}"
    return line


def print_rows(kind: str, rows: List[Dict[str, Any]], columns: Sequence[Tuple[str, str]],
               empty_message: str) -> None:
    """Print records in the current output mode.

    - plain: one line per record, or ``empty_message``
    - json: JSON array of the records
    - rich: a Rich table with ``columns``
    """
    mode = get_output_mode()

    if not rows:
        # Same empty-state message in every mode
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False, default=str))
    elif mode == "rich":
        table = Table(title=kind.capitalize(), show_lines=True, header_style="bold cyan")
        for _, header in columns:
            table.add_column(header)
        for row in rows:
            table.add_row(*(str(row.get(key, "") if row.get(key) is not None else "") for key, _ in columns))
        _console.print(table)
    else:
        for row in rows:
            print(_plain_line(kind, row))


def print_record(kind: str, row: Dict[str, Any]) -> None:
    """Print a single record, e.g. the loan an operation just produced."""
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(row, ensure_ascii=False, default=str))
    elif mode == "rich":
        print_rows(kind, [row], {"books": BOOK_COLUMNS, "members": MEMBER_COLUMNS}.get(kind, LOAN_COLUMNS), "")
    else:
        print(_plain_line(kind, row))


def print_error(message: str) -> None:
    if get_output_mode() == "rich":
        _console.print(f"[bold red]Error:[/] {message}")
    else:
        print(f"Error: {message}")
