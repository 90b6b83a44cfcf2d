import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from office_library import database
from office_library.config import settings
from office_library.errors import ConflictError, InvalidRequestError, NotFoundError
from office_library.ledger import LoanLedger
from office_library.models import Colleague

logger = logging.getLogger(__name__)


def email_from_name(first_name: str, last_name: str, domain: Optional[str] = None) -> str:
    """Derive the office address ``first.last@domain`` from a typed name."""
    first = re.sub(r"[^a-z]", "", first_name.lower()) or "user"
    last = re.sub(r"[^a-z]", "", last_name.lower()) or "name"
    return f"{first}.{last}@{domain or settings.email_domain}"


def _require_colleague_id(colleague_id: Optional[str]) -> str:
    if not (colleague_id or "").strip():
        raise InvalidRequestError("Missing colleague id.")
    return colleague_id.strip()


class RosterService:
    """The colleague roster."""

    def __init__(self, db_file: Optional[str] = None, ledger: Optional[LoanLedger] = None) -> None:
        self.db_file = db_file
        self.ledger = ledger or LoanLedger()

    def list_colleagues(self) -> List[Colleague]:
        with database.transaction(self.db_file, immediate=False) as conn:
            rows = database.select_rows(conn, "colleagues", order_by=["name"])
        return [Colleague.from_row(r) for r in rows]

    def get_colleague(self, colleague_id: str) -> Colleague:
        colleague_id = _require_colleague_id(colleague_id)
        with database.transaction(self.db_file, immediate=False) as conn:
            row = database.fetch_by_id(conn, "colleagues", colleague_id)
        if row is None:
            raise NotFoundError("Colleague not found.")
        return Colleague.from_row(row)

    def add_colleague(self, name: Optional[str], email: Optional[str], avatar_url: Optional[str] = None) -> Colleague:
        name = (name or "").strip()
        email = (email or "").strip()
        if not name or not email:
            raise InvalidRequestError("Missing required fields: name, email")
        with database.transaction(self.db_file) as conn:
            row = database.insert_row(
                conn, "colleagues", {"name": name, "email": email, "avatar_url": avatar_url}
            )
        logger.info("Colleague added: %s (%s)", name, row["id"])
        return Colleague.from_row(row)

    def update_colleague(self, colleague_id: str, changes: Dict[str, Any]) -> Colleague:
        colleague_id = _require_colleague_id(colleague_id)
        values: Dict[str, Any] = {}
        for key in ("name", "email"):
            if key in changes:
                value = (changes[key] or "").strip()
                if not value:
                    raise InvalidRequestError(f"{key} must not be empty.")
                values[key] = value
        if not values:
            raise InvalidRequestError("No fields to update.")
        with database.transaction(self.db_file) as conn:
            if not database.update_rows(conn, "colleagues", values, {"id": colleague_id}):
                raise NotFoundError("Colleague not found.")
            row = database.fetch_by_id(conn, "colleagues", colleague_id)
        logger.info("Colleague %s updated: %s", colleague_id, ", ".join(values))
        return Colleague.from_row(row)

    def delete_colleague(self, colleague_id: str) -> None:
        colleague_id = _require_colleague_id(colleague_id)
        with database.transaction(self.db_file) as conn:
            if database.fetch_by_id(conn, "colleagues", colleague_id) is None:
                raise NotFoundError("Colleague not found.")
            if self.ledger.has_active_loans_for_colleague(conn, colleague_id):
                raise ConflictError(
                    "Cannot delete colleague with active book loans. Please return all books first."
                )
            database.delete_rows(conn, "colleagues", {"id": colleague_id})
        logger.info("Colleague %s removed", colleague_id)

    def resolve(self, first_name: Optional[str], last_name: Optional[str], create: bool = False) -> Tuple[Colleague, bool]:
        """Find a colleague by typed name, matching the full name or the derived email.

        Returns ``(colleague, created)``. Only creates a record when ``create``
        is set; otherwise an unknown name is a NotFoundError.
        """
        first = (first_name or "").strip()
        last = (last_name or "").strip()
        if not first or not last:
            raise InvalidRequestError("Please enter both first name and last name.")
        name = f"{first} {last}"
        email = email_from_name(first, last)

        with database.transaction(self.db_file, immediate=create) as conn:
            row = conn.execute(
                "SELECT * FROM colleagues WHERE lower(email) = ? OR lower(name) = ? "
                "ORDER BY created_at, rowid LIMIT 1",
                (email.lower(), name.lower()),
            ).fetchone()
            if row is not None:
                return Colleague.from_row(dict(row)), False
            if not create:
                raise NotFoundError(
                    "No account found with that name. Please check spelling or borrow a book first."
                )
            created = database.insert_row(conn, "colleagues", {"name": name, "email": email})
        logger.info("Colleague created on first borrow: %s (%s)", name, created["id"])
        return Colleague.from_row(created), True
