import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from office_library.config import settings
from office_library.models import BookView, Colleague, LoanView

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _state_label(view: BookView) -> str:
    if view.status != "borrowed":
        return "available"
    label = f"borrowed by {view.borrower_name or 'unknown'}"
    if view.is_overdue(days=settings.overdue_days):
        label += " [overdue]"
    return label


def print_book_list(books: List[BookView]) -> None:
    """Print books in the current output mode.
    - plain: 'id - Title by Author (state)' lines, or 'No books in library.'
    - json: BookView objects plus an ``overdue`` flag
    - rich: a Rich table
    """
    if not books:
        print("No books in library.")
        return

    mode = get_output_mode()
    if mode == "json":
        payload = []
        for b in books:
            item = b.to_dict()
            item["overdue"] = b.is_overdue(days=settings.overdue_days)
            payload.append(item)
        print(json.dumps(payload, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Owner", style="white")
        table.add_column("State")
        for b in books:
            style = "red" if b.is_overdue(days=settings.overdue_days) else ("yellow" if b.status == "borrowed" else "green")
            table.add_row(b.book.id, b.book.title, b.book.author, b.owner_name or "", f"[{style}]{_state_label(b)}[/]")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.book.id} - {b.book.title} by {b.book.author} ({_state_label(b)})")


def print_colleague_list(colleagues: List[Colleague]) -> None:
    if not colleagues:
        print("No colleagues on the roster.")
        return
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps([c.to_dict() for c in colleagues], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="Colleagues", header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Name")
        table.add_column("Email")
        for c in colleagues:
            table.add_row(c.id, c.name, c.email)
        _console.print(table)
    else:
        for c in colleagues:
            print(f"{c.id} - {c.name} <{c.email}>")


def print_loan_history(loans: List[LoanView]) -> None:
    if not loans:
        print("No loans recorded for this book.")
        return
    if get_output_mode() == "json":
        print(json.dumps([entry.to_dict() for entry in loans], ensure_ascii=False))
        return
    for entry in loans:
        returned = entry.loan.returned_at or "still out"
        print(f"{entry.loan.borrowed_at} -> {returned}: {entry.colleague_name or entry.loan.colleague_id}")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode."""
    if not stats:
        print("No statistics available.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k.replace('_', ' ').title()}:[/] {v}" for k, v in stats.items())
        _console.print(Panel.fit(content, title="Stats", border_style="blue"))
    else:
        for k, v in stats.items():
            print(f"{k.replace('_', ' ').title()}: {v}")
