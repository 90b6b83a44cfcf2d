import pytest

from office_library.library import Library


@pytest.fixture
def lib(tmp_path, request):
    # A fresh store file for every test
    db_file = str(tmp_path / f"test_{request.node.name}.db")
    yield Library(db_file=db_file)


@pytest.fixture
def alice(lib):
    return lib.add_colleague("Alice Martin", "alice.martin@example.com")


@pytest.fixture
def bob(lib):
    return lib.add_colleague("Bob Stone", "bob.stone@example.com")


@pytest.fixture
def book(lib):
    return lib.add_book("The Pragmatic Programmer", "Andrew Hunt", domains=["Engineering"])
