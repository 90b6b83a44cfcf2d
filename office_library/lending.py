"""Loan transition engine: the borrow/return state machine.

Each transition runs in one ``BEGIN IMMEDIATE`` transaction covering the
precondition reads, the ledger write and the status write, so either both
writes land or neither does. The store's partial unique index on active
loans backs the "no active loan" precondition against concurrent borrows.
"""

import logging
from typing import List, Optional

from office_library import database
from office_library.errors import (
    ConflictError,
    InvalidRequestError,
    NotFoundError,
    StoreError,
)
from office_library.ledger import LoanLedger
from office_library.models import STATUS_AVAILABLE, STATUS_BORROWED, BookView, Colleague, Loan
from office_library.projector import BookStateProjector

logger = logging.getLogger(__name__)

MSG_ALREADY_MARKED = "This book is already marked as borrowed. Please refresh or choose another book."
MSG_ALREADY_YOURS = "You already have this book checked out. Please return it before borrowing again."
MSG_BORROWED_BY_OTHER = "This book is already borrowed by someone else. Please choose another."
MSG_NOT_YOURS = "You don't have this book checked out, so it can't be returned."


def _require_ids(book_id: Optional[str], colleague_id: Optional[str]) -> None:
    if not (book_id or "").strip() or not (colleague_id or "").strip():
        raise InvalidRequestError("Missing bookId or colleagueId")


def _reject_active_loan(active: List[Loan], colleague: Colleague) -> None:
    """Name the holder of an active loan: the requester or someone else."""
    if not active:
        return
    if any(loan.colleague_id == colleague.id for loan in active):
        raise ConflictError(MSG_ALREADY_YOURS)
    raise ConflictError(MSG_BORROWED_BY_OTHER)


class LendingService:
    def __init__(
        self,
        db_file: Optional[str] = None,
        ledger: Optional[LoanLedger] = None,
        projector: Optional[BookStateProjector] = None,
    ) -> None:
        self.db_file = db_file
        self.ledger = ledger or LoanLedger()
        self.projector = projector or BookStateProjector(self.ledger)

    def _colleague(self, conn, colleague_id: str) -> Colleague:
        row = database.fetch_by_id(conn, "colleagues", colleague_id)
        if row is None:
            raise NotFoundError("Colleague not found.")
        return Colleague.from_row(row)

    def borrow(self, book_id: str, colleague_id: str) -> BookView:
        """Check a book out to a colleague and return the updated view."""
        _require_ids(book_id, colleague_id)
        with database.transaction(self.db_file) as conn:
            colleague = self._colleague(conn, colleague_id)

            book = database.fetch_by_id(conn, "books", book_id)
            if book is None:
                raise NotFoundError("Book not found.")
            active = self.ledger.active_loans_for_book(conn, book_id)
            if book["status"] == STATUS_BORROWED:
                _reject_active_loan(active, colleague)
                # Marked borrowed with no loan behind it
                raise ConflictError(MSG_ALREADY_MARKED)
            _reject_active_loan(active, colleague)

            loan = self.ledger.open_loan(conn, book_id, colleague.id)
            try:
                self.projector.set_status(conn, book_id, STATUS_BORROWED)
            except StoreError as e:
                raise StoreError(
                    "Book status could not be updated, so the loan was not recorded. Please try again."
                ) from e

            view = self.projector.get_view(conn, book_id)

        logger.info("Book %s borrowed by colleague %s (loan %s)", book_id, colleague.id, loan.id)
        return view

    def return_book(self, book_id: str, colleague_id: str) -> BookView:
        """Check a book back in. Only the colleague holding the loan may return it."""
        _require_ids(book_id, colleague_id)
        with database.transaction(self.db_file) as conn:
            colleague = self._colleague(conn, colleague_id)

            loan = self.ledger.active_loan(conn, book_id, colleague.id)
            if loan is None:
                raise InvalidRequestError(MSG_NOT_YOURS)

            self.ledger.close_loan(conn, loan)
            try:
                self.projector.set_status(conn, book_id, STATUS_AVAILABLE)
            except StoreError as e:
                raise StoreError(
                    "Book status could not be updated, so the return was not recorded. Please try again."
                ) from e

            view = self.projector.get_view(conn, book_id)

        logger.info("Book %s returned by colleague %s (loan %s)", book_id, colleague.id, loan.id)
        return view
