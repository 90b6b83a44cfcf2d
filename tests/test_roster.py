import pytest

from office_library.config import settings
from office_library.errors import ConflictError, InvalidRequestError, NotFoundError
from office_library.roster import email_from_name


@pytest.fixture(autouse=True)
def office_domain(monkeypatch):
    monkeypatch.setattr(settings, "email_domain", "example.com")


def test_add_and_list_colleagues_sorted_by_name(lib):
    lib.add_colleague("Zoe Quinn", "zoe@example.com")
    lib.add_colleague("Aaron Black", "aaron@example.com", "https://avatars.example.com/a.png")

    colleagues = lib.list_colleagues()
    assert [c.name for c in colleagues] == ["Aaron Black", "Zoe Quinn"]
    assert colleagues[0].to_dict()["avatarUrl"] == "https://avatars.example.com/a.png"


def test_add_colleague_requires_name_and_email(lib):
    with pytest.raises(InvalidRequestError, match="Missing required fields: name, email"):
        lib.add_colleague("Someone", "")
    with pytest.raises(InvalidRequestError):
        lib.add_colleague(None, "someone@example.com")


def test_update_colleague(lib, alice):
    updated = lib.update_colleague(alice.id, {"email": "alice@example.org"})

    assert updated.email == "alice@example.org"
    assert updated.name == "Alice Martin"


def test_update_colleague_rejections(lib, alice):
    with pytest.raises(InvalidRequestError, match="No fields to update."):
        lib.update_colleague(alice.id, {})
    with pytest.raises(InvalidRequestError, match="name must not be empty."):
        lib.update_colleague(alice.id, {"name": "  "})
    with pytest.raises(NotFoundError, match="Colleague not found."):
        lib.update_colleague("ghost", {"name": "Ghost"})


def test_remove_colleague(lib, alice):
    lib.remove_colleague(alice.id)
    assert lib.list_colleagues() == []
    with pytest.raises(NotFoundError):
        lib.remove_colleague(alice.id)


def test_colleague_with_active_loan_cannot_be_removed(lib, alice, book):
    lib.borrow(book.book.id, alice.id)

    with pytest.raises(ConflictError, match="Cannot delete colleague with active book loans"):
        lib.remove_colleague(alice.id)

    lib.return_book(book.book.id, alice.id)
    lib.remove_colleague(alice.id)


def test_email_from_name():
    assert email_from_name("Alice", "Martin", "corp.test") == "alice.martin@corp.test"
    assert email_from_name("Anne-Marie", "O'Neil", "corp.test") == "annemarie.oneil@corp.test"
    assert email_from_name("Ada", "Lovelace").endswith("@example.com")


def test_resolve_by_name_is_case_insensitive(lib, alice):
    colleague, created = lib.resolve_colleague("alice", "MARTIN")

    assert colleague.id == alice.id
    assert created is False


def test_resolve_by_derived_email(lib):
    existing = lib.add_colleague("Al Martin", "alice.martin@example.com")

    colleague, created = lib.resolve_colleague("Alice", "Martin")

    assert colleague.id == existing.id
    assert created is False


def test_resolve_unknown_name(lib):
    with pytest.raises(NotFoundError, match="No account found with that name"):
        lib.resolve_colleague("Nobody", "Here")
    assert lib.list_colleagues() == []


def test_resolve_creates_when_asked(lib):
    colleague, created = lib.resolve_colleague("Grace", "Hopper", create=True)

    assert created is True
    assert colleague.name == "Grace Hopper"
    assert colleague.email == "grace.hopper@example.com"

    again, created_again = lib.resolve_colleague("Grace", "Hopper", create=True)
    assert again.id == colleague.id
    assert created_again is False


def test_resolve_requires_both_names(lib):
    with pytest.raises(InvalidRequestError, match="Please enter both first name and last name."):
        lib.resolve_colleague("Grace", " ")
