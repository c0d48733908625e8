from __future__ import annotations

AVAILABLE = "available"
CHECKED_OUT = "checked_out"
MISSING = "missing"

BOOK_STATUSES = (AVAILABLE, CHECKED_OUT, MISSING)


class Book:
    """A catalog title and its copy counts."""

    def __init__(self, title: str, isbn: str | None = None, id: int | None = None,
                 author_id: int | None = None, publisher_id: int | None = None,
                 genre: str | None = None, publication_year: int | None = None,
                 description: str | None = None, total_copies: int = 1,
                 available_copies: int | None = None, status: str | None = None,
                 created_at: str | None = None, updated_at: str | None = None,
                 author_name: str | None = None, publisher_name: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.isbn = isbn.strip() if isbn else None
        self.author_id = author_id
        self.publisher_id = publisher_id
        self.genre = genre
        self.publication_year = publication_year
        self.description = description
        self.total_copies = total_copies
        # A freshly catalogued book has every copy on the shelf
        self.available_copies = total_copies if available_copies is None else available_copies
        self.status = status or (CHECKED_OUT if self.available_copies == 0 else AVAILABLE)
        self.created_at = created_at
        self.updated_at = updated_at

        # Joined display fields, read-only
        self.author_name = author_name
        self.publisher_name = publisher_name

    @property
    def on_loan(self) -> int:
        return self.total_copies - self.available_copies

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} ({self.available_copies}/{self.total_copies} available)"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "isbn": self.isbn,
            "author_id": self.author_id,
            "publisher_id": self.publisher_id,
            "author_name": self.author_name,
            "publisher_name": self.publisher_name,
            "genre": self.genre,
            "publication_year": self.publication_year,
            "description": self.description,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            isbn=data.get("isbn"),
            author_id=data.get("author_id"),
            publisher_id=data.get("publisher_id"),
            genre=data.get("genre"),
            publication_year=data.get("publication_year"),
            description=data.get("description"),
            total_copies=data.get("total_copies", 1),
            available_copies=data.get("available_copies"),
            status=data.get("status"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            author_name=data.get("author_name"),
            publisher_name=data.get("publisher_name"),
        )
