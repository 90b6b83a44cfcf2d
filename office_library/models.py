from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

STATUS_AVAILABLE = "available"
STATUS_BORROWED = "borrowed"

BOOK_DOMAINS = (
    "Product",
    "Engineering",
    "Data",
    "Product Design",
    "Marketing",
    "People",
    "Leadership",
    "Strategy",
    "AI",
    "Other",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _load_domains(value: Any) -> List[str]:
    # Stored as a JSON array in SQLite
    if value is None:
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return [value] if value else []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


@dataclass
class Book:
    """A physical copy in the office library."""

    id: str
    title: str
    author: str
    isbn: Optional[str] = None
    cover_url: Optional[str] = None
    synopsis: Optional[str] = None
    year_published: Optional[int] = None
    page_count: Optional[int] = None
    domains: List[str] = field(default_factory=list)
    owner_id: Optional[str] = None
    status: str = STATUS_AVAILABLE
    created_at: Optional[str] = None

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "Book":
        return Book(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            isbn=row.get("isbn"),
            cover_url=row.get("cover_url"),
            synopsis=row.get("synopsis"),
            year_published=row.get("year_published"),
            page_count=row.get("page_count"),
            domains=_load_domains(row.get("domains")),
            owner_id=row.get("owner_id"),
            status=row.get("status") or STATUS_AVAILABLE,
            created_at=row.get("created_at"),
        )


@dataclass
class Colleague:
    id: str
    name: str
    email: str
    avatar_url: Optional[str] = None
    created_at: Optional[str] = None

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "Colleague":
        return Colleague(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            avatar_url=row.get("avatar_url"),
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "avatarUrl": self.avatar_url,
        }


@dataclass
class Loan:
    """One borrow event. ``returned_at`` is None while the loan is active."""

    id: str
    book_id: str
    colleague_id: str
    borrowed_at: str
    returned_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.returned_at is None

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "Loan":
        return Loan(
            id=row["id"],
            book_id=row["book_id"],
            colleague_id=row["colleague_id"],
            borrowed_at=row["borrowed_at"],
            returned_at=row.get("returned_at"),
        )


@dataclass
class LoanView:
    loan: Loan
    colleague_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.loan.id,
            "bookId": self.loan.book_id,
            "colleagueId": self.loan.colleague_id,
            "colleagueName": self.colleague_name,
            "borrowedAt": self.loan.borrowed_at,
            "returnedAt": self.loan.returned_at,
        }


@dataclass
class BookView:
    """Read-side projection of a book joined with its owner and active borrower."""

    book: Book
    owner_name: Optional[str] = None
    borrower_name: Optional[str] = None
    borrowed_at: Optional[str] = None

    @property
    def status(self) -> str:
        return self.book.status

    def is_overdue(self, now: Optional[datetime] = None, days: int = 30) -> bool:
        """A borrowed book is overdue once it has been out for more than ``days`` days."""
        if self.book.status != STATUS_BORROWED or not self.borrowed_at:
            return False
        now = now or utc_now()
        borrowed = datetime.fromisoformat(self.borrowed_at)
        if borrowed.tzinfo is None:
            borrowed = borrowed.replace(tzinfo=timezone.utc)
        return now - borrowed > timedelta(days=days)

    def to_dict(self) -> Dict[str, Any]:
        b = self.book
        return {
            "id": b.id,
            "isbn": b.isbn,
            "title": b.title,
            "author": b.author,
            "coverUrl": b.cover_url,
            "synopsis": b.synopsis,
            "yearPublished": b.year_published,
            "pageCount": b.page_count,
            "domains": list(b.domains),
            "status": b.status,
            "ownerName": self.owner_name,
            "borrowerName": self.borrower_name,
            "borrowedAt": self.borrowed_at,
        }
