import logging
import secrets
import threading
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Security
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from office_library import database
from office_library.config import configure_logging, settings
from office_library.errors import ConfigurationError, InvalidRequestError, LibraryError
from office_library.library import Library
from office_library.services.google_books_service import GoogleBooksAPIError, GoogleBooksService
from office_library.services.http_client import cleanup_http_client, get_http_client

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

_library: Optional[Library] = None
_library_lock = threading.Lock()


def get_library() -> Library:
    """Return the shared Library, creating it on first use.

    Created lazily so a missing store URL is reported per request as a 500
    instead of preventing the server from starting.
    """
    global _library
    if _library is None:
        with _library_lock:
            if _library is None:
                _library = Library()
    return _library


def get_google_books_service() -> GoogleBooksService:
    return GoogleBooksService()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await get_http_client()
    try:
        get_library()
    except LibraryError as e:
        logger.error("Library store not ready at startup: %s", e.message)
    for warning in _config_warnings():
        logger.warning(warning)
    try:
        yield
    finally:
        await cleanup_http_client()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)


@app.middleware("http")
async def add_no_cache_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.update(NO_CACHE_HEADERS)
    return response


# --- Error handling ---
def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=NO_CACHE_HEADERS)


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return _error(exc.message, exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        problems.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return _error("Invalid request: " + "; ".join(problems), 400)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(str(exc.detail), exc.status_code)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error on %s %s", request.method, request.url.path)
    return _error("Unexpected error while processing the request.", 500)


# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def require_admin(api_key: Optional[str] = Security(api_key_header)) -> None:
    """Admin gate for inventory and roster management."""
    if not settings.admin_api_key:
        raise ConfigurationError("Server configuration error: admin API key is not set.")
    if not api_key:
        raise HTTPException(status_code=401, detail="Admin API key required.")
    if not secrets.compare_digest(api_key, settings.admin_api_key):
        raise HTTPException(status_code=403, detail="Admin credentials could not be verified.")


# --- Models ---
class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class BookCreateModel(_Body):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    cover_url: Optional[str] = Field(default=None, alias="coverUrl")
    synopsis: Optional[str] = None
    year_published: Optional[int] = Field(default=None, alias="yearPublished")
    page_count: Optional[int] = Field(default=None, alias="pageCount")
    domains: Optional[List[str]] = None
    owner_id: Optional[str] = Field(default=None, alias="ownerId")


class BookUpdateModel(_Body):
    synopsis: Optional[str] = None
    year_published: Optional[int] = Field(default=None, alias="yearPublished")
    page_count: Optional[int] = Field(default=None, alias="pageCount")
    domains: Optional[List[str]] = None
    owner_id: Optional[str] = Field(default=None, alias="ownerId")


class LoanRequestModel(_Body):
    book_id: Optional[str] = Field(default=None, alias="bookId")
    colleague_id: Optional[str] = Field(default=None, alias="colleagueId")


class ColleagueCreateModel(_Body):
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = Field(default=None, alias="avatarUrl")


class ColleagueUpdateModel(_Body):
    name: Optional[str] = None
    email: Optional[str] = None


class ColleagueResolveModel(_Body):
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    create: bool = False


def _config_warnings() -> List[str]:
    warnings = []
    if not settings.store_url:
        warnings.append("LIBRARY_STORE_URL is not set: every request fails with a configuration error.")
    if not settings.admin_api_key:
        warnings.append(
            "LIBRARY_ADMIN_API_KEY is not set: book and roster management endpoints are disabled."
        )
    return warnings


# --- Health ---
@app.get("/health")
def health():
    """Report configuration presence and store connectivity."""
    db = database.check_connection()
    return {
        "status": "healthy" if db["connected"] and db["tablesExist"] else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "config": {
            "hasStoreUrl": bool(settings.store_url),
            "hasAdminKey": bool(settings.admin_api_key),
        },
        "warnings": _config_warnings(),
        "database": db,
        "services": {"google_books": settings.enable_google_books},
    }


# --- Books ---
@app.get("/books")
def list_books(
    q: Optional[str] = Query(None, description="Title or author contains"),
    domain: Optional[str] = Query(None),
    status: Optional[str] = Query(None, description="available | borrowed"),
    library: Library = Depends(get_library),
):
    books, colleagues = library.list_books_and_colleagues(q=q, domain=domain, status=status)
    return {
        "books": [b.to_dict() for b in books],
        "colleagues": [c.to_dict() for c in colleagues],
    }


@app.post("/books", dependencies=[Depends(require_admin)])
def create_book(payload: BookCreateModel, library: Library = Depends(get_library)):
    view = library.add_book(
        payload.title,
        payload.author,
        isbn=payload.isbn,
        cover_url=payload.cover_url,
        synopsis=payload.synopsis,
        year_published=payload.year_published,
        page_count=payload.page_count,
        domains=payload.domains,
        owner_id=payload.owner_id,
    )
    return {"book": view.to_dict()}


@app.get("/books/{book_id}")
def get_book(book_id: str, library: Library = Depends(get_library)):
    return {"book": library.find_book(book_id).to_dict()}


@app.patch("/books/{book_id}", dependencies=[Depends(require_admin)])
def update_book(book_id: str, payload: BookUpdateModel, library: Library = Depends(get_library)):
    # Only keys the client actually sent are applied
    changes = payload.model_dump(exclude_unset=True)
    view = library.update_book(book_id, changes)
    return {"book": view.to_dict()}


@app.delete("/books/{book_id}", dependencies=[Depends(require_admin)])
def delete_book(book_id: str, library: Library = Depends(get_library)):
    library.remove_book(book_id)
    return {"ok": True}


@app.get("/books/{book_id}/loans")
def book_loans(book_id: str, library: Library = Depends(get_library)):
    return {"loans": [loan.to_dict() for loan in library.loan_history(book_id)]}


# --- Loans ---
@app.post("/borrow")
def borrow(payload: LoanRequestModel, library: Library = Depends(get_library)):
    view = library.borrow(payload.book_id, payload.colleague_id)
    return {"book": view.to_dict()}


@app.post("/return")
def return_book(payload: LoanRequestModel, library: Library = Depends(get_library)):
    view = library.return_book(payload.book_id, payload.colleague_id)
    return {"book": view.to_dict()}


# --- Colleagues ---
@app.get("/colleagues")
def list_colleagues(library: Library = Depends(get_library)):
    return {"colleagues": [c.to_dict() for c in library.list_colleagues()]}


@app.post("/colleagues")
def create_colleague(payload: ColleagueCreateModel, library: Library = Depends(get_library)):
    colleague = library.add_colleague(payload.name, payload.email, payload.avatar_url)
    return {"colleague": colleague.to_dict()}


@app.post("/colleagues/resolve")
def resolve_colleague(payload: ColleagueResolveModel, library: Library = Depends(get_library)):
    colleague, created = library.resolve_colleague(payload.first_name, payload.last_name, create=payload.create)
    return {"colleague": colleague.to_dict(), "created": created}


@app.patch("/colleagues/{colleague_id}", dependencies=[Depends(require_admin)])
def update_colleague(colleague_id: str, payload: ColleagueUpdateModel, library: Library = Depends(get_library)):
    colleague = library.update_colleague(colleague_id, payload.model_dump(exclude_unset=True))
    return {"colleague": colleague.to_dict()}


@app.delete("/colleagues/{colleague_id}", dependencies=[Depends(require_admin)])
def delete_colleague(colleague_id: str, library: Library = Depends(get_library)):
    library.remove_colleague(colleague_id)
    return {"ok": True}


# --- Admin ---
@app.post("/admin/reconcile", dependencies=[Depends(require_admin)])
def reconcile(library: Library = Depends(get_library)):
    return {"updated": library.reconcile_statuses()}


# --- Catalog search ---
@app.get("/catalog/search")
async def catalog_search(
    q: str = Query("", description="Title, author or ISBN"),
    service: GoogleBooksService = Depends(get_google_books_service),
):
    """Look up book metadata on Google Books to prefill a new catalog entry."""
    if not q.strip():
        raise InvalidRequestError("Missing search query.")
    if not service.is_available():
        raise HTTPException(status_code=503, detail="Google Books lookup is disabled.")
    try:
        results = await service.search(q)
    except GoogleBooksAPIError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"results": [r.to_dict() for r in results]}
