import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest

from office_library import database
from office_library.errors import ConflictError, InvalidRequestError, NotFoundError, StoreError
from office_library.lending import (
    MSG_ALREADY_MARKED,
    MSG_ALREADY_YOURS,
    MSG_BORROWED_BY_OTHER,
    MSG_NOT_YOURS,
)


def _force_status(lib, book_id, status):
    with database.transaction(lib.db_file) as conn:
        database.update_rows(conn, "books", {"status": status}, {"id": book_id})


def _active_loans(lib, book_id):
    with database.transaction(lib.db_file, immediate=False) as conn:
        return lib.ledger.active_loans_for_book(conn, book_id)


def _assert_consistent(lib):
    # status is 'borrowed' exactly when the book has one active loan
    for view in lib.list_books():
        active = _active_loans(lib, view.book.id)
        assert len(active) <= 1
        assert (view.status == "borrowed") == (len(active) == 1)


def test_borrow_available_book(lib, alice, book):
    view = lib.borrow(book.book.id, alice.id)

    assert view.status == "borrowed"
    assert view.borrower_name == "Alice Martin"
    assert view.borrowed_at is not None
    loans = _active_loans(lib, book.book.id)
    assert len(loans) == 1
    assert loans[0].colleague_id == alice.id
    _assert_consistent(lib)


def test_borrow_of_book_held_by_someone_else(lib, alice, bob, book):
    lib.borrow(book.book.id, alice.id)

    with pytest.raises(ConflictError, match="already borrowed by someone else") as excinfo:
        lib.borrow(book.book.id, bob.id)

    assert excinfo.value.message == MSG_BORROWED_BY_OTHER
    assert excinfo.value.status_code == 400
    loans = _active_loans(lib, book.book.id)
    assert [loan.colleague_id for loan in loans] == [alice.id]


def test_repeat_borrow_by_holder(lib, alice, book):
    lib.borrow(book.book.id, alice.id)

    with pytest.raises(ConflictError, match="already have this book checked out") as excinfo:
        lib.borrow(book.book.id, alice.id)

    assert excinfo.value.message == MSG_ALREADY_YOURS
    assert len(_active_loans(lib, book.book.id)) == 1


def test_borrow_of_book_marked_borrowed_without_a_loan(lib, alice, book):
    _force_status(lib, book.book.id, "borrowed")

    with pytest.raises(ConflictError) as excinfo:
        lib.borrow(book.book.id, alice.id)

    assert excinfo.value.message == MSG_ALREADY_MARKED
    assert _active_loans(lib, book.book.id) == []


def test_borrow_again_with_stale_status_names_your_own_loan(lib, alice, book):
    lib.borrow(book.book.id, alice.id)
    _force_status(lib, book.book.id, "available")

    with pytest.raises(ConflictError, match="You already have this book checked out") as excinfo:
        lib.borrow(book.book.id, alice.id)
    assert excinfo.value.message == MSG_ALREADY_YOURS


def test_borrow_with_stale_status_and_someone_elses_loan(lib, alice, bob, book):
    lib.borrow(book.book.id, alice.id)
    _force_status(lib, book.book.id, "available")

    with pytest.raises(ConflictError) as excinfo:
        lib.borrow(book.book.id, bob.id)
    assert excinfo.value.message == MSG_BORROWED_BY_OTHER
    assert len(_active_loans(lib, book.book.id)) == 1


def test_store_rejects_second_active_loan_when_check_is_bypassed(lib, alice, bob, book, monkeypatch):
    lib.borrow(book.book.id, alice.id)
    _force_status(lib, book.book.id, "available")
    # Simulate a competing borrow that read the ledger before the first one committed
    monkeypatch.setattr(lib.ledger, "active_loans_for_book", lambda conn, book_id: [])

    with pytest.raises(ConflictError) as excinfo:
        lib.borrow(book.book.id, bob.id)

    assert "already borrowed by someone else" in excinfo.value.message
    monkeypatch.undo()
    loans = _active_loans(lib, book.book.id)
    assert [loan.colleague_id for loan in loans] == [alice.id]


def test_return_by_someone_else_is_rejected(lib, alice, bob, book):
    lib.borrow(book.book.id, alice.id)

    with pytest.raises(InvalidRequestError) as excinfo:
        lib.return_book(book.book.id, bob.id)

    assert excinfo.value.message == MSG_NOT_YOURS
    assert lib.find_book(book.book.id).status == "borrowed"
    assert len(_active_loans(lib, book.book.id)) == 1


def test_return_by_borrower(lib, alice, book):
    lib.borrow(book.book.id, alice.id)

    view = lib.return_book(book.book.id, alice.id)

    assert view.status == "available"
    assert view.borrower_name is None
    assert view.borrowed_at is None
    assert _active_loans(lib, book.book.id) == []
    history = lib.loan_history(book.book.id)
    assert len(history) == 1
    assert history[0].loan.returned_at is not None
    _assert_consistent(lib)


def test_borrow_then_return_restores_the_view(lib, alice, bob, book):
    owned = lib.update_book(book.book.id, {"owner_id": bob.id, "synopsis": "Journeyman to master."})
    before = lib.find_book(book.book.id).to_dict()
    assert before == owned.to_dict()

    lib.borrow(book.book.id, alice.id)
    returned = lib.return_book(book.book.id, alice.id)

    assert returned.to_dict() == before
    assert lib.find_book(book.book.id).to_dict() == before


def test_return_of_book_not_borrowed(lib, alice, book):
    with pytest.raises(InvalidRequestError, match="don't have this book checked out"):
        lib.return_book(book.book.id, alice.id)


def test_unknown_colleague_is_not_found(lib, book):
    with pytest.raises(NotFoundError, match="Colleague not found."):
        lib.borrow(book.book.id, "no-such-colleague")
    with pytest.raises(NotFoundError, match="Colleague not found."):
        lib.return_book(book.book.id, "no-such-colleague")


def test_unknown_book_is_not_found(lib, alice):
    with pytest.raises(NotFoundError, match="Book not found."):
        lib.borrow("no-such-book", alice.id)


@pytest.mark.parametrize("book_id, colleague_id", [("", "c1"), ("b1", ""), (None, "c1"), ("b1", None)])
def test_missing_ids_are_rejected(lib, book_id, colleague_id):
    with pytest.raises(InvalidRequestError, match="Missing bookId or colleagueId"):
        lib.borrow(book_id, colleague_id)
    with pytest.raises(InvalidRequestError, match="Missing bookId or colleagueId"):
        lib.return_book(book_id, colleague_id)


def test_borrow_return_round_trip_keeps_history(lib, alice, bob, book):
    lib.borrow(book.book.id, alice.id)
    lib.return_book(book.book.id, alice.id)
    lib.borrow(book.book.id, bob.id)
    lib.return_book(book.book.id, bob.id)

    assert lib.find_book(book.book.id).status == "available"
    history = lib.loan_history(book.book.id)
    assert [h.colleague_name for h in history] == ["Bob Stone", "Alice Martin"]
    assert all(h.loan.returned_at is not None for h in history)
    for h in history:
        assert datetime.fromisoformat(h.loan.returned_at) >= datetime.fromisoformat(h.loan.borrowed_at)
    _assert_consistent(lib)


def test_status_write_failure_rolls_back_the_loan(lib, alice, book, monkeypatch):
    def broken_set_status(conn, book_id, status):
        raise StoreError("Unable to update book status to borrowed.")

    monkeypatch.setattr(lib.projector, "set_status", broken_set_status)

    with pytest.raises(StoreError, match="loan was not recorded"):
        lib.borrow(book.book.id, alice.id)

    monkeypatch.undo()
    assert lib.loan_history(book.book.id) == []
    assert lib.find_book(book.book.id).status == "available"


def test_status_write_failure_on_return_keeps_the_loan_open(lib, alice, book, monkeypatch):
    lib.borrow(book.book.id, alice.id)

    def broken_set_status(conn, book_id, status):
        raise StoreError("Unable to update book status to available.")

    monkeypatch.setattr(lib.projector, "set_status", broken_set_status)

    with pytest.raises(StoreError, match="return was not recorded"):
        lib.return_book(book.book.id, alice.id)

    monkeypatch.undo()
    assert len(_active_loans(lib, book.book.id)) == 1
    assert lib.find_book(book.book.id).status == "borrowed"


def test_concurrent_borrows_admit_exactly_one(lib, book):
    colleagues = [lib.add_colleague(f"Person {i}", f"person{i}@example.com") for i in range(8)]
    barrier = threading.Barrier(len(colleagues))

    def attempt(colleague):
        barrier.wait()
        try:
            lib.borrow(book.book.id, colleague.id)
            return "ok"
        except ConflictError:
            return "conflict"

    with ThreadPoolExecutor(max_workers=len(colleagues)) as pool:
        results = list(pool.map(attempt, colleagues))

    assert results.count("ok") == 1
    assert results.count("conflict") == len(colleagues) - 1
    assert len(_active_loans(lib, book.book.id)) == 1
    _assert_consistent(lib)
