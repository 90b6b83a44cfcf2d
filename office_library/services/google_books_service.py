import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from office_library.config import settings
from office_library.services.http_client import OptimizedHTTPClient, get_http_client

logger = logging.getLogger(__name__)

BASE_URL = "https://www.googleapis.com/books/v1"


@dataclass
class CatalogSearchResult:
    """One candidate from the Google Books volume search, used to prefill a new book."""

    id: str
    title: str
    authors: List[str] = field(default_factory=list)
    description: Optional[str] = None
    isbn: Optional[str] = None
    thumbnail: Optional[str] = None
    page_count: Optional[int] = None
    year_published: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "authors": self.authors,
            "description": self.description,
            "isbn": self.isbn,
            "thumbnail": self.thumbnail,
            "pageCount": self.page_count,
            "yearPublished": self.year_published,
        }


class GoogleBooksAPIError(Exception):
    """Google Books could not be reached or answered with an error."""


class GoogleBooksService:
    """Search Google Books for metadata when adding a book to the catalog."""

    def __init__(self, api_key: Optional[str] = None, client: Optional[OptimizedHTTPClient] = None):
        self.api_key = api_key or settings.google_books_api_key
        self._client = client

    def is_available(self) -> bool:
        return settings.enable_google_books

    @staticmethod
    def _parse_year(published_date: Optional[str]) -> Optional[int]:
        match = re.match(r"^(\d{4})", published_date or "")
        return int(match.group(1)) if match else None

    @classmethod
    def _parse_volume(cls, item: Dict[str, Any]) -> CatalogSearchResult:
        info = item.get("volumeInfo") or {}
        images = info.get("imageLinks") or {}
        identifiers = info.get("industryIdentifiers") or []
        isbn = next((i.get("identifier") for i in identifiers if i.get("type") == "ISBN_13"), None)
        if isbn is None:
            isbn = next((i.get("identifier") for i in identifiers if i.get("type") == "ISBN_10"), None)
        authors = info.get("authors")
        return CatalogSearchResult(
            id=str(item.get("id", "")),
            title=info.get("title") or "Untitled",
            authors=list(authors) if isinstance(authors, list) else [],
            description=info.get("description"),
            isbn=isbn,
            thumbnail=images.get("thumbnail") or images.get("smallThumbnail"),
            page_count=info.get("pageCount"),
            year_published=cls._parse_year(info.get("publishedDate")),
        )

    async def search(self, query: str, max_results: int = 10) -> List[CatalogSearchResult]:
        """Search volumes by free text (title, author or ISBN)."""
        query = (query or "").strip()
        if not query:
            return []
        params: Dict[str, Any] = {"q": query, "maxResults": max_results}
        if self.api_key:
            params["key"] = self.api_key

        client = self._client or await get_http_client()
        try:
            response = await client.get(f"{BASE_URL}/volumes", params=params)
        except httpx.TimeoutException as e:
            logger.error("Google Books search timed out: %s", e)
            raise GoogleBooksAPIError("Google Books did not answer in time.") from e
        except httpx.HTTPError as e:
            logger.error("Google Books search failed: %s", e)
            raise GoogleBooksAPIError("Problem contacting Google Books.") from e

        if response.status_code != 200:
            logger.error("Google Books returned %s: %s", response.status_code, response.text[:200])
            raise GoogleBooksAPIError("Google Books returned an error.")

        items = response.json().get("items") or []
        return [self._parse_volume(item) for item in items if isinstance(item, dict)]
