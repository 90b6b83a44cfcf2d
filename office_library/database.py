"""SQLite-backed entity store for books, colleagues and loans.

Exposes a small table API (fetch by id, equality/NULL filtered selects,
insert, update, delete) plus transaction scopes. The at-most-one-active-loan
rule is enforced by the schema itself through a partial unique index, so a
second concurrent borrow of the same book fails inside the store.
"""

import json
import logging
import re
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

from office_library.config import settings
from office_library.errors import ConfigurationError, StoreError, StoreUnavailableError

logger = logging.getLogger(__name__)

TABLE_COLUMNS: Dict[str, Sequence[str]] = {
    "books": (
        "id", "isbn", "title", "author", "cover_url", "synopsis",
        "year_published", "page_count", "domains", "owner_id", "status", "created_at",
    ),
    "colleagues": ("id", "name", "email", "avatar_url", "created_at"),
    "loans": ("id", "book_id", "colleague_id", "borrowed_at", "returned_at"),
}

_ORDER_TERM = re.compile(r"^-?[a-z_]+$")

# sqlite reports lock contention and missing files as OperationalError
_UNAVAILABLE_MARKERS = ("locked", "busy", "unable to open", "disk i/o")


def new_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _resolve_db_file(db_file: Optional[str]) -> str:
    path = db_file or settings.resolve_store_path()
    if not path:
        raise ConfigurationError("Server configuration error: missing store URL (LIBRARY_STORE_URL).")
    return path


def _translate(exc: sqlite3.Error) -> StoreError:
    message = str(exc)
    if isinstance(exc, sqlite3.OperationalError) and any(m in message.lower() for m in _UNAVAILABLE_MARKERS):
        return StoreUnavailableError("The library store is unavailable. Please try again.")
    return StoreError(f"Library store error: {message}")


def get_db_connection(db_file: Optional[str] = None, timeout: Optional[float] = None) -> sqlite3.Connection:
    """Open a connection to the store in autocommit mode.

    Transactions are opened explicitly by :func:`transaction`. ``timeout``
    bounds how long any statement waits on a competing writer.
    """
    path = _resolve_db_file(db_file)
    try:
        conn = sqlite3.connect(
            path,
            timeout=settings.store_timeout if timeout is None else timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON;")
    except sqlite3.Error as e:
        logger.error("Could not open library store at %s: %s", path, e)
        raise _translate(e) from e
    return conn


@contextmanager
def transaction(db_file: Optional[str] = None, immediate: bool = True) -> Iterator[sqlite3.Connection]:
    """Run the enclosed block in a single transaction.

    ``immediate`` takes the write lock up front so concurrent writers queue
    at BEGIN instead of failing at COMMIT. Read-only callers pass False and
    still get a consistent snapshot across several SELECTs.
    """
    conn = get_db_connection(db_file)
    try:
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        except sqlite3.Error as e:
            logger.warning("Could not open store transaction: %s", e)
            raise _translate(e) from e
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException as exc:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error:
                logger.exception("Rollback failed")
            if isinstance(exc, sqlite3.Error):
                logger.exception("Store transaction failed")
                raise _translate(exc) from exc
            raise
    finally:
        conn.close()


def create_tables(conn: sqlite3.Connection) -> None:
    """Create the tables and indexes if they do not exist."""
    cursor = conn.cursor()
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS colleagues (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            avatar_url TEXT,
            created_at TEXT NOT NULL
        )
    """)
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS books (
            id TEXT PRIMARY KEY,
            isbn TEXT,
            title TEXT NOT NULL,
            author TEXT NOT NULL,
            cover_url TEXT,
            synopsis TEXT,
            year_published INTEGER,
            page_count INTEGER,
            domains TEXT NOT NULL DEFAULT '[]',
            owner_id TEXT REFERENCES colleagues(id) ON DELETE SET NULL,
            status TEXT NOT NULL DEFAULT 'available'
                CHECK(status IN ('available', 'borrowed')),
            created_at TEXT NOT NULL
        )
    """)
    # Loans keep no foreign keys: ledger rows outlive the book or colleague
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS loans (
            id TEXT PRIMARY KEY,
            book_id TEXT NOT NULL,
            colleague_id TEXT NOT NULL,
            borrowed_at TEXT NOT NULL,
            returned_at TEXT
        )
    """)

    # Columns added after the first schema
    cursor.execute("PRAGMA table_info(colleagues)")
    columns = [column[1] for column in cursor.fetchall()]
    if "avatar_url" not in columns:
        cursor.execute("ALTER TABLE colleagues ADD COLUMN avatar_url TEXT")
    cursor.execute("PRAGMA table_info(books)")
    columns = [column[1] for column in cursor.fetchall()]
    if "isbn" not in columns:
        cursor.execute("ALTER TABLE books ADD COLUMN isbn TEXT")
    if "domains" not in columns:
        cursor.execute("ALTER TABLE books ADD COLUMN domains TEXT NOT NULL DEFAULT '[]'")

    cursor.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_loans_one_active_per_book "
        "ON loans(book_id) WHERE returned_at IS NULL"
    )
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_book_id ON loans(book_id)")
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_loans_colleague_active "
        "ON loans(colleague_id) WHERE returned_at IS NULL"
    )
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_created_at ON books(created_at)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_colleagues_email ON colleagues(email COLLATE NOCASE)")


def initialize_database(db_file: Optional[str] = None) -> None:
    """Create the schema, running migrations for older stores."""
    path = _resolve_db_file(db_file)
    conn = get_db_connection(path)
    try:
        # WAL lets readers keep going while a borrow holds the write lock
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("BEGIN IMMEDIATE")
        create_tables(conn)
        conn.execute("COMMIT")
    except sqlite3.Error as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        logger.exception("Could not initialise library store at %s", path)
        raise _translate(e) from e
    finally:
        conn.close()
    logger.debug("Library store ready at %s", path)


def check_connection(db_file: Optional[str] = None) -> Dict[str, Any]:
    """Report whether the store answers and the tables exist (used by /health)."""
    report: Dict[str, Any] = {"connected": False, "tablesExist": False, "error": None}
    try:
        conn = get_db_connection(db_file)
    except (ConfigurationError, StoreError) as e:
        report["error"] = e.message
        return report
    try:
        report["connected"] = True
        names = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        }
        report["tablesExist"] = set(TABLE_COLUMNS).issubset(names)
    except sqlite3.Error as e:
        report["error"] = str(e)
    finally:
        conn.close()
    return report


# ------------------------- Table API ------------------------- #
def _check_columns(table: str, columns: Sequence[str]) -> None:
    known = TABLE_COLUMNS.get(table)
    if known is None:
        raise ValueError(f"Unknown table: {table}")
    unknown = [c for c in columns if c not in known]
    if unknown:
        raise ValueError(f"Unknown columns for {table}: {', '.join(unknown)}")


def _encode(value: Any) -> Any:
    if isinstance(value, (list, tuple, set)):
        return json.dumps(list(value))
    return value


def _where(filters: Optional[Dict[str, Any]]) -> tuple:
    if not filters:
        return "", []
    clauses: List[str] = []
    params: List[Any] = []
    for column, value in filters.items():
        if value is None:
            clauses.append(f"{column} IS NULL")
        else:
            clauses.append(f"{column} = ?")
            params.append(_encode(value))
    return " WHERE " + " AND ".join(clauses), params


def _order(order_by: Optional[Sequence[str]]) -> str:
    if not order_by:
        return ""
    terms = []
    for term in order_by:
        if not _ORDER_TERM.match(term):
            raise ValueError(f"Invalid order term: {term}")
        column = term.lstrip("-")
        terms.append(f"{column} DESC" if term.startswith("-") else f"{column} ASC")
    return " ORDER BY " + ", ".join(terms)


def fetch_by_id(conn: sqlite3.Connection, table: str, row_id: str) -> Optional[Dict[str, Any]]:
    _check_columns(table, ["id"])
    row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
    return dict(row) if row else None


def select_rows(
    conn: sqlite3.Connection,
    table: str,
    filters: Optional[Dict[str, Any]] = None,
    order_by: Optional[Sequence[str]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Select rows matching every equality filter; a None value matches NULL."""
    _check_columns(table, list(filters or {}) + [t.lstrip("-") for t in order_by or []])
    where, params = _where(filters)
    sql = f"SELECT * FROM {table}{where}{_order(order_by)}"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(int(limit))
    return [dict(row) for row in conn.execute(sql, params).fetchall()]


def insert_row(conn: sqlite3.Connection, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
    """Insert a row, assigning ``id`` (and ``created_at`` where the table has one).

    Returns the stored row. Constraint violations surface as
    ``sqlite3.IntegrityError`` so callers can map them to domain errors.
    """
    data = dict(values)
    data.setdefault("id", new_id())
    if "created_at" in TABLE_COLUMNS.get(table, ()):
        data.setdefault("created_at", now_iso())
    _check_columns(table, list(data))
    columns = ", ".join(data)
    placeholders = ", ".join("?" for _ in data)
    conn.execute(
        f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
        [_encode(v) for v in data.values()],
    )
    return fetch_by_id(conn, table, data["id"])


def update_rows(
    conn: sqlite3.Connection,
    table: str,
    values: Dict[str, Any],
    filters: Dict[str, Any],
) -> int:
    """Apply ``values`` to every row matching ``filters``; returns the row count."""
    if not values:
        raise ValueError("update_rows needs at least one value")
    if not filters:
        raise ValueError("update_rows refuses to update a whole table")
    _check_columns(table, list(values) + list(filters))
    set_clause = ", ".join(f"{column} = ?" for column in values)
    where, params = _where(filters)
    cursor = conn.execute(
        f"UPDATE {table} SET {set_clause}{where}",
        [_encode(v) for v in values.values()] + params,
    )
    return cursor.rowcount


def delete_rows(conn: sqlite3.Connection, table: str, filters: Dict[str, Any]) -> int:
    if not filters:
        raise ValueError("delete_rows refuses to empty a whole table")
    _check_columns(table, list(filters))
    where, params = _where(filters)
    return conn.execute(f"DELETE FROM {table}{where}", params).rowcount
