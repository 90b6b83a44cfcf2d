import subprocess
import sys
from typing import List, Optional

import typer
from rich.console import Console

from office_library.config import configure_logging, settings
from office_library.errors import LibraryError
from office_library.library import Library
from office_library.ui_helpers import (
    print_book_list,
    print_colleague_list,
    print_loan_history,
    print_stats_result,
    set_output_mode,
)

APP_NAME = "Office Library CLI"

console = Console()

app = typer.Typer(help=APP_NAME)

_state = {"db_file": None}


def _library() -> Library:
    try:
        return Library(db_file=_state["db_file"])
    except LibraryError as e:
        print(f"Error: {e.message}")
        raise typer.Exit(code=1)


def _fail(e: LibraryError) -> None:
    print(f"Error: {e.message}")
    raise typer.Exit(code=1)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db: Optional[str] = typer.Option(
        None,
        "--db",
        help="SQLite store file (defaults to LIBRARY_STORE_URL)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
):
    """Global CLI options."""
    configure_logging("DEBUG" if verbose else "WARNING")
    if output:
        set_output_mode(output)
    _state["db_file"] = db


@app.command("init-db")
def cli_init_db():
    """Create the store schema."""
    lib = _library()
    print(f"Library store ready at {lib.db_file}")


@app.command("list")
def cli_list(
    q: Optional[str] = typer.Option(None, "--q", help="Title or author contains"),
    domain: Optional[str] = typer.Option(None, "--domain"),
    status: Optional[str] = typer.Option(None, "--status", help="available | borrowed"),
):
    """List books with their lending state; overdue loans are flagged."""
    try:
        books = _library().list_books(q=q, domain=domain, status=status)
    except LibraryError as e:
        _fail(e)
    print_book_list(books)


@app.command("overdue")
def cli_overdue():
    """List books out for longer than the overdue limit."""
    try:
        books = _library().overdue_books()
    except LibraryError as e:
        _fail(e)
    if not books:
        print("No overdue books.")
        return
    print_book_list(books)


@app.command("colleagues")
def cli_colleagues():
    """List the colleague roster."""
    try:
        colleagues = _library().list_colleagues()
    except LibraryError as e:
        _fail(e)
    print_colleague_list(colleagues)


@app.command("add-colleague")
def cli_add_colleague(name: str, email: str):
    """Add a colleague to the roster."""
    try:
        colleague = _library().add_colleague(name, email)
    except LibraryError as e:
        _fail(e)
    print(f"Added colleague: {colleague.name} ({colleague.id})")


@app.command("add-book")
def cli_add_book(
    title: str,
    author: str,
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    owner: Optional[str] = typer.Option(None, "--owner", help="Owner colleague id"),
    domain: Optional[List[str]] = typer.Option(None, "--domain", help="Repeat for several domains"),
):
    """Add a book to the catalog."""
    try:
        view = _library().add_book(title, author, isbn=isbn, owner_id=owner, domains=domain or [])
    except LibraryError as e:
        _fail(e)
    print(f"Added book: {view.book.title} by {view.book.author} ({view.book.id})")


@app.command("borrow")
def cli_borrow(book_id: str, colleague_id: str):
    """Check a book out to a colleague."""
    try:
        view = _library().borrow(book_id, colleague_id)
    except LibraryError as e:
        _fail(e)
    print(f"Borrowed: {view.book.title} by {view.borrower_name}")


@app.command("return")
def cli_return(book_id: str, colleague_id: str):
    """Check a book back in."""
    try:
        view = _library().return_book(book_id, colleague_id)
    except LibraryError as e:
        _fail(e)
    print(f"Returned: {view.book.title}")


@app.command("history")
def cli_history(book_id: str):
    """Show the loan history of a book."""
    try:
        loans = _library().loan_history(book_id)
    except LibraryError as e:
        _fail(e)
    print_loan_history(loans)


@app.command("reconcile")
def cli_reconcile():
    """Rewrite cached book statuses from the loan ledger."""
    try:
        changed = _library().reconcile_statuses()
    except LibraryError as e:
        _fail(e)
    if changed:
        print(f"Reconciled {len(changed)} book(s): {', '.join(changed)}")
    else:
        print("All book statuses match the loan ledger.")


@app.command("stats")
def cli_stats():
    """Show library statistics."""
    try:
        stats = _library().get_statistics()
    except LibraryError as e:
        _fail(e)
    print_stats_result(stats)


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Run the REST API with uvicorn."""
    console.print(f"Starting API on http://{host}:{port}")
    args = [sys.executable, "-m", "uvicorn", "office_library.api:app", "--host", host, "--port", str(port)]
    if reload:
        args.append("--reload")
    subprocess.run(args)


if __name__ == "__main__":
    app()
