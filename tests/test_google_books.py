import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from office_library.api import app, get_google_books_service
from office_library.config import settings
from office_library.services.google_books_service import GoogleBooksAPIError, GoogleBooksService
from office_library.services.http_client import OptimizedHTTPClient

VOLUMES = {
    "items": [
        {
            "id": "vol1",
            "volumeInfo": {
                "title": "Clean Code",
                "authors": ["Robert C. Martin"],
                "description": "A handbook of agile software craftsmanship.",
                "publishedDate": "2008-08-01",
                "pageCount": 464,
                "industryIdentifiers": [
                    {"type": "ISBN_10", "identifier": "0132350882"},
                    {"type": "ISBN_13", "identifier": "9780132350884"},
                ],
                "imageLinks": {"thumbnail": "http://books.google.com/clean.jpg"},
            },
        },
        {
            "id": "vol2",
            "volumeInfo": {
                "industryIdentifiers": [{"type": "ISBN_10", "identifier": "1234567890"}],
                "publishedDate": "unknown",
            },
        },
    ]
}


def _search(handler, query, **kwargs):
    async def run():
        async with OptimizedHTTPClient(transport=httpx.MockTransport(handler)) as client:
            service = GoogleBooksService(api_key=kwargs.pop("api_key", None), client=client)
            return await service.search(query, **kwargs)

    return asyncio.run(run())


def test_search_parses_volumes():
    seen = {}

    def handler(request):
        seen["params"] = dict(request.url.params)
        seen["path"] = request.url.path
        return httpx.Response(200, json=VOLUMES)

    results = _search(handler, " clean code ", api_key="secret", max_results=5)

    assert seen["path"] == "/books/v1/volumes"
    assert seen["params"] == {"q": "clean code", "maxResults": "5", "key": "secret"}
    first, second = results
    assert first.isbn == "9780132350884"
    assert first.year_published == 2008
    assert first.page_count == 464
    assert first.thumbnail == "http://books.google.com/clean.jpg"
    assert first.to_dict()["authors"] == ["Robert C. Martin"]
    assert second.title == "Untitled"
    assert second.isbn == "1234567890"
    assert second.year_published is None


def test_search_with_no_items():
    results = _search(lambda request: httpx.Response(200, json={"totalItems": 0}), "nothing")
    assert results == []


def test_blank_query_does_not_call_out():
    def handler(request):
        raise AssertionError("no request expected")

    assert _search(handler, "   ") == []


def test_error_status_raises():
    with pytest.raises(GoogleBooksAPIError, match="returned an error"):
        _search(lambda request: httpx.Response(503, text="unavailable"), "clean code")


def test_connection_failure_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GoogleBooksAPIError, match="Problem contacting Google Books."):
        _search(handler, "clean code")


def test_timeout_raises():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(GoogleBooksAPIError, match="did not answer in time"):
        _search(handler, "clean code")


@pytest.fixture
def search_client(monkeypatch):
    state = {"handler": lambda request: httpx.Response(200, json=VOLUMES)}

    def make_service():
        transport = httpx.MockTransport(lambda request: state["handler"](request))
        return GoogleBooksService(client=OptimizedHTTPClient(transport=transport))

    monkeypatch.setattr(settings, "enable_google_books", True)
    app.dependency_overrides[get_google_books_service] = make_service
    try:
        yield TestClient(app), state
    finally:
        app.dependency_overrides.clear()


def test_catalog_search_endpoint(search_client):
    client, _ = search_client

    response = client.get("/catalog/search", params={"q": "clean code"})

    assert response.status_code == 200
    results = response.json()["results"]
    assert results[0]["isbn"] == "9780132350884"
    assert results[0]["yearPublished"] == 2008


def test_catalog_search_requires_query(search_client):
    client, _ = search_client
    response = client.get("/catalog/search")
    assert response.status_code == 400
    assert response.json() == {"error": "Missing search query."}


def test_catalog_search_upstream_failure(search_client):
    client, state = search_client
    state["handler"] = lambda request: httpx.Response(500)

    response = client.get("/catalog/search", params={"q": "clean code"})

    assert response.status_code == 502
    assert response.json() == {"error": "Google Books returned an error."}


def test_catalog_search_disabled(search_client, monkeypatch):
    client, _ = search_client
    monkeypatch.setattr(settings, "enable_google_books", False)

    response = client.get("/catalog/search", params={"q": "clean code"})

    assert response.status_code == 503
    assert response.json() == {"error": "Google Books lookup is disabled."}
