import pytest

from office_library.catalog import normalize_domains
from office_library.errors import ConflictError, InvalidRequestError, NotFoundError


def test_add_book_with_metadata(lib, alice):
    view = lib.add_book(
        "  Inspired  ",
        "Marty Cagan",
        isbn="9781119387503",
        cover_url="https://covers.example.com/inspired.jpg",
        synopsis="How to create tech products customers love.",
        year_published=2017,
        page_count=368,
        domains=["Product", "Leadership", "Product"],
        owner_id=alice.id,
    )

    assert view.book.title == "Inspired"
    assert view.book.domains == ["Product", "Leadership"]
    assert view.status == "available"
    assert view.owner_name == "Alice Martin"
    assert lib.find_book(view.book.id).to_dict() == view.to_dict()


@pytest.mark.parametrize("title, author", [("", "Someone"), ("Something", "  "), (None, None)])
def test_add_book_requires_title_and_author(lib, title, author):
    with pytest.raises(InvalidRequestError, match="Missing required fields: title, author"):
        lib.add_book(title, author)
    assert lib.list_books() == []


def test_add_book_with_unknown_owner(lib):
    with pytest.raises(InvalidRequestError, match="Invalid owner ID: The colleague with ID ghost does not exist."):
        lib.add_book("Title", "Author", owner_id="ghost")


def test_add_book_rejects_negative_page_count(lib):
    with pytest.raises(InvalidRequestError, match="pageCount"):
        lib.add_book("Title", "Author", page_count=-1)


def test_normalize_domains():
    assert normalize_domains(None) == []
    assert normalize_domains([" Data ", "AI", "Data"]) == ["Data", "AI"]
    with pytest.raises(InvalidRequestError, match="Unknown domain: Cooking"):
        normalize_domains(["Cooking"])


def test_update_book_applies_only_given_fields(lib, alice, book):
    view = lib.update_book(book.book.id, {"synopsis": "Journeyman to master.", "owner_id": alice.id})

    assert view.book.synopsis == "Journeyman to master."
    assert view.owner_name == "Alice Martin"
    assert view.book.domains == ["Engineering"]
    assert view.book.title == "The Pragmatic Programmer"


def test_update_book_can_clear_owner(lib, alice):
    view = lib.add_book("Title", "Author", owner_id=alice.id)
    cleared = lib.update_book(view.book.id, {"owner_id": None})
    assert cleared.book.owner_id is None


def test_update_book_rejections(lib, book):
    with pytest.raises(InvalidRequestError, match="No fields to update."):
        lib.update_book(book.book.id, {})
    with pytest.raises(InvalidRequestError, match="Fields cannot be updated: status"):
        lib.update_book(book.book.id, {"status": "borrowed"})
    with pytest.raises(InvalidRequestError, match="Invalid owner ID"):
        lib.update_book(book.book.id, {"owner_id": "ghost"})
    with pytest.raises(NotFoundError, match="Book not found."):
        lib.update_book("missing", {"synopsis": "x"})
    with pytest.raises(InvalidRequestError, match="Missing book id."):
        lib.update_book("", {"synopsis": "x"})


def test_remove_book(lib, book):
    lib.remove_book(book.book.id)

    assert lib.list_books() == []
    with pytest.raises(NotFoundError):
        lib.find_book(book.book.id)
    with pytest.raises(NotFoundError):
        lib.remove_book(book.book.id)


def test_borrowed_book_cannot_be_removed(lib, alice, book):
    lib.borrow(book.book.id, alice.id)

    with pytest.raises(ConflictError, match="currently borrowed and can't be removed yet"):
        lib.remove_book(book.book.id)

    lib.return_book(book.book.id, alice.id)
    lib.remove_book(book.book.id)
    assert lib.list_books() == []
