import os
import tempfile
from datetime import date, timedelta

import pytest

# Modules that build a Library at import time (api.py) must not touch the
# working-directory database while tests run.
os.environ.setdefault(
    "LIBRARY_DB_FILE", os.path.join(tempfile.gettempdir(), f"library_test_{os.getpid()}.db")
)

from library_app.book import Book  # noqa: E402
from library_app.library import Library  # noqa: E402


class FakeClock:
    """Callable standing in for date.today()."""

    def __init__(self, today: date) -> None:
        self.current = today

    def __call__(self) -> date:
        return self.current

    def set(self, today: date) -> None:
        self.current = today

    def advance(self, days: int) -> None:
        self.current += timedelta(days=days)


@pytest.fixture
def clock():
    return FakeClock(date(2024, 1, 1))


@pytest.fixture
def lib(tmp_path, request, clock, monkeypatch):
    # Create a unique database file for each test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    # CLI and API code that builds its own Library picks up the same file
    monkeypatch.setenv("LIBRARY_DB_FILE", db_file)
    lib = Library(db_file=db_file, clock=clock)
    yield lib
    lib.close()


@pytest.fixture
def member(lib):
    return lib.add_member("ada@example.com", first_name="Ada", last_name="Lovelace")


@pytest.fixture
def book(lib):
    return lib.add_book(Book("Dune", isbn="9780306406157", total_copies=2, genre="Science Fiction"))
