import logging
from typing import Any, Dict, List, Optional, Tuple

from office_library import database
from office_library.catalog import CatalogService
from office_library.config import settings
from office_library.errors import NotFoundError
from office_library.ledger import LoanLedger
from office_library.lending import LendingService
from office_library.models import BookView, Colleague, LoanView
from office_library.projector import BookStateProjector
from office_library.roster import RosterService

logger = logging.getLogger(__name__)


class Library:
    """Manages the book collection, the colleague roster and the loan ledger."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        # Falls back to LIBRARY_STORE_URL; a missing store is a ConfigurationError
        self.db_file = db_file or settings.resolve_store_path()
        database.initialize_database(self.db_file)

        self.ledger = LoanLedger()
        self.projector = BookStateProjector(self.ledger)
        self.lending = LendingService(self.db_file, self.ledger, self.projector)
        self.catalog = CatalogService(self.db_file, self.ledger, self.projector)
        self.roster = RosterService(self.db_file, self.ledger)

    # ------------------------- Loan lifecycle ------------------------- #
    def borrow(self, book_id: str, colleague_id: str) -> BookView:
        return self.lending.borrow(book_id, colleague_id)

    def return_book(self, book_id: str, colleague_id: str) -> BookView:
        return self.lending.return_book(book_id, colleague_id)

    # ------------------------- Read paths ------------------------- #
    def list_books(
        self, q: Optional[str] = None, domain: Optional[str] = None, status: Optional[str] = None
    ) -> List[BookView]:
        """All books with owner/borrower names, fresh on every call."""
        with database.transaction(self.db_file, immediate=False) as conn:
            return self.projector.list_views(conn, q=q, domain=domain, status=status)

    def list_books_and_colleagues(
        self, q: Optional[str] = None, domain: Optional[str] = None, status: Optional[str] = None
    ) -> Tuple[List[BookView], List[Colleague]]:
        # One snapshot so a borrower name always has its colleague in the list
        with database.transaction(self.db_file, immediate=False) as conn:
            books = self.projector.list_views(conn, q=q, domain=domain, status=status)
            rows = database.select_rows(conn, "colleagues", order_by=["name"])
        return books, [Colleague.from_row(r) for r in rows]

    def find_book(self, book_id: str) -> BookView:
        return self.catalog.get_book(book_id)

    def loan_history(self, book_id: str) -> List[LoanView]:
        with database.transaction(self.db_file, immediate=False) as conn:
            if database.fetch_by_id(conn, "books", book_id) is None:
                raise NotFoundError("Book not found.")
            loans = self.ledger.history_for_book(conn, book_id)
            names = {r["id"]: r["name"] for r in database.select_rows(conn, "colleagues")}
        return [LoanView(loan=loan, colleague_name=names.get(loan.colleague_id)) for loan in loans]

    def overdue_books(self, days: Optional[int] = None) -> List[BookView]:
        days = settings.overdue_days if days is None else days
        return [v for v in self.list_books(status="borrowed") if v.is_overdue(days=days)]

    # ------------------------- Catalog ------------------------- #
    def add_book(self, title: Optional[str], author: Optional[str], **fields: Any) -> BookView:
        return self.catalog.add_book(title, author, **fields)

    def update_book(self, book_id: str, changes: Dict[str, Any]) -> BookView:
        return self.catalog.update_book(book_id, changes)

    def remove_book(self, book_id: str) -> None:
        self.catalog.delete_book(book_id)

    # ------------------------- Roster ------------------------- #
    def list_colleagues(self) -> List[Colleague]:
        return self.roster.list_colleagues()

    def add_colleague(self, name: Optional[str], email: Optional[str], avatar_url: Optional[str] = None) -> Colleague:
        return self.roster.add_colleague(name, email, avatar_url)

    def update_colleague(self, colleague_id: str, changes: Dict[str, Any]) -> Colleague:
        return self.roster.update_colleague(colleague_id, changes)

    def remove_colleague(self, colleague_id: str) -> None:
        self.roster.delete_colleague(colleague_id)

    def resolve_colleague(self, first_name: str, last_name: str, create: bool = False) -> Tuple[Colleague, bool]:
        return self.roster.resolve(first_name, last_name, create=create)

    # ------------------------- Maintenance ------------------------- #
    def reconcile_statuses(self) -> List[str]:
        """Rewrite cached book statuses from the ledger."""
        with database.transaction(self.db_file) as conn:
            return self.projector.reconcile(conn)

    def get_statistics(self) -> Dict[str, int]:
        books, colleagues = self.list_books_and_colleagues()
        borrowed = [b for b in books if b.status == "borrowed"]
        return {
            "total_books": len(books),
            "borrowed": len(borrowed),
            "available": len(books) - len(borrowed),
            "overdue": sum(1 for b in borrowed if b.is_overdue(days=settings.overdue_days)),
            "colleagues": len(colleagues),
        }
