import pytest

from library_app.book import Book
from library_app.errors import AuthorNotFound, BookHasActiveLoans, PublisherNotFound
from library_app.library import Library
from library_app.utils.validators import ISBNValidator, TextValidator


def test_add_list_and_find(lib):
    assert lib.list_books() == []

    book = lib.add_book(Book("Ulysses", isbn="978-0-19-953567-5"))

    assert book.id is not None
    assert book.isbn == "9780199535675"
    assert lib.find_book(book.id).title == "Ulysses"
    assert lib.find_book_by_isbn("978-0199535675").id == book.id
    assert len(lib.list_books()) == 1


def test_new_book_has_every_copy_available(lib):
    book = lib.add_book(Book("Emma", total_copies=4))
    assert (book.total_copies, book.available_copies, book.status) == (4, 4, "available")
    assert book.on_loan == 0


def test_add_duplicate_isbn(lib, book):
    with pytest.raises(ValueError, match="already exists"):
        lib.add_book(Book("Another Dune", isbn="9780306406157"))
    assert lib.count_books() == 1


def test_add_book_rejects_invalid_input(lib):
    with pytest.raises(ValueError, match="Invalid ISBN"):
        lib.add_book(Book("Bad", isbn="9780321765723"))
    with pytest.raises(ValueError):
        lib.add_book(Book("   "))
    with pytest.raises(ValueError):
        lib.add_book(Book("Negative", total_copies=-1))
    assert lib.list_books() == []


def test_add_book_checks_author_and_publisher(lib):
    with pytest.raises(AuthorNotFound):
        lib.add_book(Book("Orphan", author_id=99))
    with pytest.raises(PublisherNotFound):
        lib.add_book(Book("Orphan", publisher_id=99))


def test_book_joins_author_and_publisher_names(lib):
    author = lib.add_author("Frank Herbert", nationality="American")
    publisher = lib.add_publisher("Chilton", email="info@chilton.example")
    book = lib.add_book(Book("Dune Messiah", author_id=author.id, publisher_id=publisher.id))
    assert book.author_name == "Frank Herbert"
    assert book.publisher_name == "Chilton"
    assert [b.id for b in lib.list_books(author_id=author.id)] == [book.id]


def test_persistence(lib, book):
    lib2 = Library(db_file=lib.db_file)
    assert lib2.find_book(book.id).title == "Dune"


def test_list_books_filters_and_pages(lib, book):
    lib.add_book(Book("Emma", isbn="0306406152", genre="Classic"))
    lib.add_book(Book("Persuasion", genre="Classic"))

    assert [b.title for b in lib.list_books(genre="Classic")] == ["Emma", "Persuasion"]
    assert [b.title for b in lib.list_books(search="Dun")] == ["Dune"]
    assert lib.count_books(genre="Classic") == 2
    page = lib.list_books(limit=2, offset=1)
    assert [b.title for b in page] == ["Emma", "Persuasion"]


def test_update_book(lib, book):
    updated = lib.update_book(book.id, title="Dune (Deluxe)", genre="Classic", publication_year=1965)
    assert updated.title == "Dune (Deluxe)"
    assert updated.genre == "Classic"
    assert updated.publication_year == 1965
    assert updated.isbn == "9780306406157"


def test_update_book_missing_returns_none(lib):
    assert lib.update_book(999, title="Nothing") is None


def test_update_book_requires_a_change(lib, book):
    with pytest.raises(ValueError):
        lib.update_book(book.id)
    with pytest.raises(ValueError):
        lib.update_book(book.id, status="lost")


def test_update_total_copies_keeps_loans_consistent(lib, member, book):
    lib.loans.create_loan(member.id, book.id)
    updated = lib.update_book(book.id, total_copies=5)
    assert (updated.total_copies, updated.available_copies) == (5, 4)

    with pytest.raises(ValueError):
        lib.update_book(book.id, total_copies=0)
    assert lib.find_book(book.id).total_copies == 5


def test_missing_override_set_and_cleared(lib, book):
    assert lib.update_book(book.id, status="missing").status == "missing"
    assert lib.list_books(status="missing")[0].id == book.id
    assert lib.update_book(book.id, status="available").status == "available"


def test_remove(lib):
    book = lib.add_book(Book("Test"))
    assert lib.remove_book(book.id) is True
    assert lib.remove_book(book.id) is False


def test_remove_book_with_open_loan_is_refused(lib, member, book):
    lib.loans.create_loan(member.id, book.id)
    with pytest.raises(BookHasActiveLoans):
        lib.remove_book(book.id)
    assert lib.find_book(book.id) is not None


def test_remove_book_with_history_is_refused(lib, member, book):
    loan = lib.loans.create_loan(member.id, book.id)
    lib.loans.return_loan(loan.id)
    with pytest.raises(ValueError, match="loan history"):
        lib.remove_book(book.id)


def test_authors_and_publishers(lib):
    lib.add_author("Ursula K. Le Guin", biography="Wrote Earthsea")
    lib.add_author("Frank Herbert")
    assert [a.name for a in lib.list_authors()] == ["Frank Herbert", "Ursula K. Le Guin"]
    assert [a.name for a in lib.search_authors("Earthsea")] == ["Ursula K. Le Guin"]
    assert lib.get_author(999) is None

    with pytest.raises(ValueError):
        lib.add_author("12345")

    lib.add_publisher("Ace", email="ace@example.com")
    with pytest.raises(ValueError):
        lib.add_publisher("Ace Again", email="ace@example.com")
    with pytest.raises(ValueError):
        lib.add_publisher("No Mail", email="not-an-email")
    assert len(lib.list_publishers()) == 1


def test_members(lib, member):
    assert member.email == "ada@example.com"
    assert member.full_name == "Ada Lovelace"
    assert member.is_active is True

    with pytest.raises(ValueError):
        lib.add_member("ADA@example.com")
    with pytest.raises(ValueError):
        lib.add_member("grace@example.com", role="admin")

    student = lib.add_member("grace@example.com", first_name="Grace", membership_type="student")
    assert [m.id for m in lib.list_members(membership_type="student")] == [student.id]
    assert [m.id for m in lib.list_members(search="Love")] == [member.id]


def test_update_and_deactivate_member(lib, member):
    updated = lib.update_member(member.id, membership_type="premium")
    assert updated.membership_type == "premium"

    assert lib.deactivate_member(member.id).is_active is False
    assert lib.list_members(is_active=True) == []
    assert lib.deactivate_member(999) is None
    assert lib.update_member(999, first_name="Nobody") is None


def test_isbn_validator():
    assert ISBNValidator.is_valid_isbn("9780306406157")
    assert ISBNValidator.is_valid_isbn("0-306-40615-2")
    assert not ISBNValidator.is_valid_isbn("9780321765723")
    assert not ISBNValidator.is_valid_isbn("12345")
    assert ISBNValidator.normalize_isbn("978-0-306-40615-7") == "9780306406157"


def test_text_validator():
    assert TextValidator.validate_email("reader@example.com")
    assert not TextValidator.validate_email("reader@example")
    assert not TextValidator.validate_name("  ")
    assert TextValidator.validate_title("Dune")
