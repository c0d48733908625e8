"""Catalog records that carry no invariants of their own.

Authors, publishers and members are plain dataclasses loaded from SQLite rows.
Books live in ``book.py`` and loans in ``loan.py``.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

ROLES = ("patron", "staff")
MEMBERSHIP_TYPES = ("standard", "premium", "student")


def _from_row(cls, data: Dict[str, Any]):
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class Author:
    id: int
    name: str
    nationality: Optional[str] = None
    date_of_birth: Optional[str] = None
    biography: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_dict(data: dict) -> "Author":
        return _from_row(Author, data)


@dataclass
class Publisher:
    id: int
    name: str
    address: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_dict(data: dict) -> "Publisher":
        return _from_row(Publisher, data)


@dataclass
class Member:
    """A library user. Only ``is_active`` matters to the loan engine."""

    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str = "patron"
    membership_type: str = "standard"
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["full_name"] = self.full_name
        return data

    @staticmethod
    def from_dict(data: dict) -> "Member":
        member = _from_row(Member, data)
        member.is_active = bool(member.is_active)
        return member
