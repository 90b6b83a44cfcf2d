"""Book state projector.

Builds the read-side ``BookView`` by joining books with their single active
loan and with colleague names, and owns the denormalized ``books.status``
column, which it only ever writes as a mirror of the ledger.
"""

import logging
import sqlite3
from typing import List, Optional

from office_library import database
from office_library.errors import InvalidRequestError, StoreError
from office_library.ledger import LoanLedger
from office_library.models import (
    BOOK_DOMAINS,
    STATUS_AVAILABLE,
    STATUS_BORROWED,
    Book,
    BookView,
)

logger = logging.getLogger(__name__)

_VIEW_SQL = """
    SELECT b.*,
           owner.name AS owner_name,
           borrower.name AS borrower_name,
           loan.borrowed_at AS loan_borrowed_at
    FROM books b
    LEFT JOIN loans loan ON loan.book_id = b.id AND loan.returned_at IS NULL
    LEFT JOIN colleagues borrower ON borrower.id = loan.colleague_id
    LEFT JOIN colleagues owner ON owner.id = b.owner_id
"""


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_view(row: sqlite3.Row) -> BookView:
    data = dict(row)
    return BookView(
        book=Book.from_row(data),
        owner_name=data.get("owner_name"),
        borrower_name=data.get("borrower_name"),
        borrowed_at=data.get("loan_borrowed_at"),
    )


class BookStateProjector:
    def __init__(self, ledger: Optional[LoanLedger] = None) -> None:
        self.ledger = ledger or LoanLedger()

    def list_views(
        self,
        conn: sqlite3.Connection,
        q: Optional[str] = None,
        domain: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[BookView]:
        """All books with their state, newest first, optionally filtered."""
        clauses: List[str] = []
        params: List[str] = []
        if status:
            if status not in (STATUS_AVAILABLE, STATUS_BORROWED):
                raise InvalidRequestError("status must be 'available' or 'borrowed'.")
            clauses.append("b.status = ?")
            params.append(status)
        if q and q.strip():
            pattern = f"%{_escape_like(q.strip().lower())}%"
            clauses.append("(lower(b.title) LIKE ? ESCAPE '\\' OR lower(b.author) LIKE ? ESCAPE '\\')")
            params.extend([pattern, pattern])
        if domain and domain not in BOOK_DOMAINS:
            raise InvalidRequestError(f"Unknown domain: {domain}")

        sql = _VIEW_SQL
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY b.created_at DESC, b.rowid DESC"
        views = [_row_to_view(row) for row in conn.execute(sql, params).fetchall()]
        if domain:
            views = [v for v in views if domain in v.book.domains]
        return views

    def get_view(self, conn: sqlite3.Connection, book_id: str) -> Optional[BookView]:
        row = conn.execute(_VIEW_SQL + " WHERE b.id = ?", (book_id,)).fetchone()
        return _row_to_view(row) if row else None

    def set_status(self, conn: sqlite3.Connection, book_id: str, status: str) -> None:
        """Write the cached status; callers do this in the ledger write's transaction."""
        try:
            updated = database.update_rows(conn, "books", {"status": status}, {"id": book_id})
        except sqlite3.Error as e:
            logger.exception("Could not set status of book %s to %s", book_id, status)
            raise StoreError(f"Unable to update book status to {status}.") from e
        if updated != 1:
            raise StoreError(f"Unable to update book status to {status}.")

    def reconcile(self, conn: sqlite3.Connection) -> List[str]:
        """Rewrite every book's status from the ledger; returns the ids that changed."""
        borrowed_ids = {loan.book_id for loan in self.ledger.all_active_loans(conn)}
        changed: List[str] = []
        for row in database.select_rows(conn, "books"):
            expected = STATUS_BORROWED if row["id"] in borrowed_ids else STATUS_AVAILABLE
            if row["status"] != expected:
                self.set_status(conn, row["id"], expected)
                changed.append(row["id"])
        if changed:
            logger.warning("Reconciled status of %d book(s) from the loan ledger: %s", len(changed), changed)
        return changed
