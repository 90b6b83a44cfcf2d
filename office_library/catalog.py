import logging
from typing import Any, Dict, Iterable, List, Optional

from office_library import database
from office_library.errors import ConflictError, InvalidRequestError, NotFoundError
from office_library.ledger import LoanLedger
from office_library.models import BOOK_DOMAINS, STATUS_AVAILABLE, STATUS_BORROWED, BookView
from office_library.projector import BookStateProjector

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("synopsis", "year_published", "page_count", "domains", "owner_id")


def normalize_domains(domains: Optional[Iterable[str]]) -> List[str]:
    """Drop duplicates (order kept) and reject anything outside the known domains."""
    if domains is None:
        return []
    result: List[str] = []
    for d in domains:
        d = str(d).strip()
        if d not in BOOK_DOMAINS:
            raise InvalidRequestError(f"Unknown domain: {d}. Allowed: {', '.join(BOOK_DOMAINS)}")
        if d not in result:
            result.append(d)
    return result


def _clean_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _check_non_negative(name: str, value: Optional[int]) -> None:
    if value is not None and value < 0:
        raise InvalidRequestError(f"{name} must not be negative.")


def _require_book_id(book_id: Optional[str]) -> str:
    if not (book_id or "").strip():
        raise InvalidRequestError("Missing book id.")
    return book_id.strip()


class CatalogService:
    """Inventory management: plain writes with the delete guard on borrowed books."""

    def __init__(
        self,
        db_file: Optional[str] = None,
        ledger: Optional[LoanLedger] = None,
        projector: Optional[BookStateProjector] = None,
    ) -> None:
        self.db_file = db_file
        self.ledger = ledger or LoanLedger()
        self.projector = projector or BookStateProjector(self.ledger)

    def _check_owner(self, conn, owner_id: Optional[str]) -> None:
        if owner_id and database.fetch_by_id(conn, "colleagues", owner_id) is None:
            raise InvalidRequestError(f"Invalid owner ID: The colleague with ID {owner_id} does not exist.")

    def add_book(
        self,
        title: Optional[str],
        author: Optional[str],
        *,
        isbn: Optional[str] = None,
        cover_url: Optional[str] = None,
        synopsis: Optional[str] = None,
        year_published: Optional[int] = None,
        page_count: Optional[int] = None,
        domains: Optional[Iterable[str]] = None,
        owner_id: Optional[str] = None,
    ) -> BookView:
        title = (title or "").strip()
        author = (author or "").strip()
        if not title or not author:
            raise InvalidRequestError("Missing required fields: title, author")
        _check_non_negative("pageCount", page_count)
        values: Dict[str, Any] = {
            "title": title,
            "author": author,
            "isbn": _clean_optional(isbn),
            "cover_url": _clean_optional(cover_url),
            "synopsis": synopsis,
            "year_published": year_published,
            "page_count": page_count,
            "domains": normalize_domains(domains),
            "owner_id": owner_id or None,
            "status": STATUS_AVAILABLE,
        }
        with database.transaction(self.db_file) as conn:
            self._check_owner(conn, values["owner_id"])
            row = database.insert_row(conn, "books", values)
            view = self.projector.get_view(conn, row["id"])
        logger.info("Book added: %s (%s)", title, row["id"])
        return view

    def update_book(self, book_id: str, changes: Dict[str, Any]) -> BookView:
        """Apply a partial update; only keys present in ``changes`` are written."""
        book_id = _require_book_id(book_id)
        unknown = [k for k in changes if k not in UPDATABLE_FIELDS]
        if unknown:
            raise InvalidRequestError(f"Fields cannot be updated: {', '.join(unknown)}")
        if not changes:
            raise InvalidRequestError("No fields to update.")

        values = dict(changes)
        if "domains" in values:
            values["domains"] = normalize_domains(values["domains"] or [])
        if "page_count" in values:
            _check_non_negative("pageCount", values["page_count"])
        if "owner_id" in values:
            values["owner_id"] = values["owner_id"] or None

        with database.transaction(self.db_file) as conn:
            if database.fetch_by_id(conn, "books", book_id) is None:
                raise NotFoundError("Book not found.")
            if "owner_id" in values:
                self._check_owner(conn, values["owner_id"])
            database.update_rows(conn, "books", values, {"id": book_id})
            view = self.projector.get_view(conn, book_id)
        logger.info("Book %s updated: %s", book_id, ", ".join(values))
        return view

    def delete_book(self, book_id: str) -> None:
        book_id = _require_book_id(book_id)
        with database.transaction(self.db_file) as conn:
            book = database.fetch_by_id(conn, "books", book_id)
            if book is None:
                raise NotFoundError("Book not found.")
            if book["status"] == STATUS_BORROWED or self.ledger.active_loans_for_book(conn, book_id):
                raise ConflictError("This book is currently borrowed and can't be removed yet.")
            database.delete_rows(conn, "books", {"id": book_id})
        logger.info("Book %s removed", book_id)

    def get_book(self, book_id: str) -> BookView:
        book_id = _require_book_id(book_id)
        with database.transaction(self.db_file, immediate=False) as conn:
            view = self.projector.get_view(conn, book_id)
        if view is None:
            raise NotFoundError("Book not found.")
        return view
