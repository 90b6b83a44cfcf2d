"""The loan ledger: the only writer of loan rows.

Loans are appended on borrow and closed exactly once on return; they are
never reopened or deleted. Every method runs on a connection supplied by the
caller so ledger writes share the caller's transaction.
"""

import logging
import sqlite3
from typing import List, Optional

from office_library import database
from office_library.errors import ConflictError, StoreError
from office_library.models import Loan

logger = logging.getLogger(__name__)

TABLE = "loans"


class ActiveLoanExists(ConflictError):
    """The store rejected a second active loan for the same book."""


class LoanLedger:
    def open_loan(self, conn: sqlite3.Connection, book_id: str, colleague_id: str) -> Loan:
        """Append an active loan. The store's partial unique index rejects a second one."""
        try:
            row = database.insert_row(conn, TABLE, {
                "book_id": book_id,
                "colleague_id": colleague_id,
                "borrowed_at": database.now_iso(),
                "returned_at": None,
            })
        except sqlite3.IntegrityError as e:
            logger.info("Store rejected a second active loan for book %s: %s", book_id, e)
            raise ActiveLoanExists(
                "This book is already borrowed by someone else. Please choose another."
            ) from e
        except sqlite3.Error as e:
            logger.exception("Could not insert loan for book %s", book_id)
            raise StoreError("Unable to create loan. Please try again.") from e
        if row is None:
            raise StoreError("Unable to create loan. Please try again.")
        return Loan.from_row(row)

    def close_loan(self, conn: sqlite3.Connection, loan: Loan) -> Loan:
        """Stamp ``returned_at`` on an active loan."""
        if not loan.is_active:
            raise ConflictError("This loan has already been returned.")
        returned_at = database.now_iso()
        try:
            # returned_at IS NULL in the filter keeps closed loans immutable
            updated = database.update_rows(
                conn, TABLE, {"returned_at": returned_at}, {"id": loan.id, "returned_at": None}
            )
        except sqlite3.Error as e:
            logger.exception("Could not close loan %s", loan.id)
            raise StoreError("Unable to mark this loan as returned. Please try again.") from e
        if updated != 1:
            raise StoreError("Unable to mark this loan as returned. Please try again.")
        return Loan(
            id=loan.id,
            book_id=loan.book_id,
            colleague_id=loan.colleague_id,
            borrowed_at=loan.borrowed_at,
            returned_at=returned_at,
        )

    def active_loans_for_book(self, conn: sqlite3.Connection, book_id: str) -> List[Loan]:
        rows = database.select_rows(conn, TABLE, {"book_id": book_id, "returned_at": None})
        return [Loan.from_row(r) for r in rows]

    def active_loan(self, conn: sqlite3.Connection, book_id: str, colleague_id: str) -> Optional[Loan]:
        rows = database.select_rows(
            conn, TABLE, {"book_id": book_id, "colleague_id": colleague_id, "returned_at": None}
        )
        return Loan.from_row(rows[0]) if len(rows) == 1 else None

    def all_active_loans(self, conn: sqlite3.Connection) -> List[Loan]:
        return [Loan.from_row(r) for r in database.select_rows(conn, TABLE, {"returned_at": None})]

    def has_active_loans_for_colleague(self, conn: sqlite3.Connection, colleague_id: str) -> bool:
        rows = database.select_rows(
            conn, TABLE, {"colleague_id": colleague_id, "returned_at": None}, limit=1
        )
        return bool(rows)

    def history_for_book(self, conn: sqlite3.Connection, book_id: str) -> List[Loan]:
        """Every loan of a book, newest first."""
        rows = database.select_rows(conn, TABLE, {"book_id": book_id}, order_by=["-borrowed_at"])
        return [Loan.from_row(r) for r in rows]
