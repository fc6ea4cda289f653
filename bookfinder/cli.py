import asyncio
import json
import logging
import os
import subprocess
import sys
import webbrowser
from dataclasses import dataclass
from functools import wraps
from typing import List, Optional

import typer
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from bookfinder.book import BookEntry, BookRecord, ReadingStatus
from bookfinder.catalog import normalize_many
from bookfinder.config import settings
from bookfinder.errors import AuthError, ExternalServiceError, NotFoundError, ValidationError
from bookfinder.library import LibraryStore
from bookfinder.services.google_books_service import GoogleBooksService
from bookfinder.services.http_client import OptimizedHTTPClient
from bookfinder.session import SessionManager, UserStore
from bookfinder.stats import Stats, compute

logger = logging.getLogger(__name__)

console = Console()

OUTPUT_MODES = ("plain", "json", "rich")
_output_mode = "plain"


@dataclass
class CliServices:
    session: SessionManager
    library: LibraryStore


def build_services() -> CliServices:
    """Open the store and restore the persisted session for one command."""
    users = UserStore(settings.database_file)
    session = SessionManager(users, settings.session_file)
    session.init()
    return CliServices(session=session, library=LibraryStore(session, settings.database_file))


def handle_errors(func):
    """Print domain errors and exit non-zero instead of showing a traceback."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (AuthError, NotFoundError, ValidationError, ExternalServiceError) as e:
            print(f"Error: {e.message}")
            raise typer.Exit(code=1)
    return wrapper


def _require_login(services: CliServices):
    user = services.session.current_user()
    if user is None:
        print("Not logged in. Run 'bookfinder login' first.")
        raise typer.Exit(code=1)
    return user


async def _search_catalog(query: str, limit: int) -> List[BookRecord]:
    async with OptimizedHTTPClient(timeout=settings.google_books_timeout) as client:
        service = GoogleBooksService(http_client=client)
        items = await service.search(query, max_results=limit)
    return normalize_many(items)


# --- Output ---
def _print_entries(entries: List[BookEntry]) -> None:
    if not entries:
        print("No books in library.")
        return

    if _output_mode == "json":
        print(json.dumps([e.to_dict() for e in entries], ensure_ascii=False))
    elif _output_mode == "rich":
        table = Table(title="📚 My Library", box=box.ROUNDED, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Authors", style="white")
        table.add_column("Status", style="green")
        table.add_column("⭐", justify="center")
        for e in entries:
            table.add_row(
                str(e.id),
                escape(e.title),
                escape(", ".join(e.authors)),
                e.status.label,
                "⭐" if e.favourite else "",
            )
        console.print(table)
    else:
        for e in entries:
            star = " ⭐" if e.favourite else ""
            print(f"{e.id} - {e.title} by {', '.join(e.authors)} [{e.status.value}]{star}")


def _print_stats(stats: Stats) -> None:
    if _output_mode == "json":
        print(json.dumps({**stats.to_dict(), "to_read": stats.to_read}))
    elif _output_mode == "rich":
        content = (
            f"[bold]Total Books:[/] {stats.total}\n"
            f"[bold]Reading:[/] {stats.reading}\n"
            f"[bold]Finished:[/] {stats.finished}\n"
            f"[bold]To Read:[/] {stats.to_read}"
        )
        console.print(Panel.fit(content, title="📊 Reading Stats", border_style="blue"))
    else:
        print(f"Total Books: {stats.total}")
        print(f"Reading: {stats.reading}")
        print(f"Finished: {stats.finished}")
        print(f"To Read: {stats.to_read}")


# --- Typer CLI application ---
app = typer.Typer(help="Book Finder: search the catalog and track your reading")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global options such as the output mode."""
    global _output_mode
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    mode = (output or "plain").lower().strip()
    _output_mode = mode if mode in OUTPUT_MODES else "plain"


@app.command("register")
@handle_errors
def cli_register(
    email: str = typer.Option(..., "--email", "-e", prompt=True),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True),
    name: str = typer.Option("", "--name", "-n", help="Display name (defaults to the email's local part)"),
):
    """Create an account and log in."""
    services = build_services()
    user = services.session.register(name, email, password)
    print(f"Registration successful! Welcome to Book Finder, {user.name}.")


@app.command("login")
@handle_errors
def cli_login(
    email: str = typer.Option(..., "--email", "-e", prompt=True),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True),
):
    """Log in; the session is kept until logout."""
    services = build_services()
    user = services.session.login(email, password)
    print(f"Login successful! Welcome back, {user.name}.")


@app.command("logout")
def cli_logout():
    services = build_services()
    services.session.logout()
    print("Logged out successfully.")


@app.command("whoami")
def cli_whoami():
    """Show the logged-in user."""
    services = build_services()
    user = _require_login(services)
    print(f"{user.name} <{user.email}>")


@app.command("search")
def cli_search(
    query: str = typer.Argument(..., help="Title, author, ISBN or keyword"),
    limit: int = typer.Option(10, "--limit", "-l", help="Maximum number of results"),
):
    """Search the Google Books catalog."""
    try:
        records = asyncio.run(_search_catalog(query, limit))
    except ExternalServiceError as e:
        # A failed search reads as an empty result
        logger.warning(f"Catalog search for '{query}' failed: {e}")
        print("Failed to search books. Please try again.")
        records = []

    if not records:
        print("No books found.")
        return

    if _output_mode == "json":
        print(json.dumps([r.to_dict() for r in records], ensure_ascii=False))
        return

    print(f"Found {len(records)} books:")
    for i, record in enumerate(records, 1):
        print(f"{i}. {record.title} - {', '.join(record.authors)} ({record.external_id})")


@app.command("add")
@handle_errors
def cli_add(
    query: str = typer.Argument(..., help="Catalog search query"),
    pick: int = typer.Option(1, "--pick", help="Which search result to add (1-based)"),
    status: ReadingStatus = typer.Option(ReadingStatus.TO_READ, "--status", "-s"),
):
    """Search the catalog and add one of the results to your library."""
    services = build_services()
    user = _require_login(services)
    records = asyncio.run(_search_catalog(query, max(pick, 1)))
    if len(records) < pick or pick < 1:
        print(f"Could not find book: {query}")
        raise typer.Exit(code=1)

    entry = services.library.add(user.email, records[pick - 1], status)
    print(f'"{entry.title}" added to your library! (id {entry.id})')


@app.command("list")
@handle_errors
def cli_list(
    status: Optional[ReadingStatus] = typer.Option(None, "--status", "-s"),
    favourites: bool = typer.Option(False, "--favourites", "-f", help="Only favourites"),
    sort_by: str = typer.Option("added_at", "--sort", help="added_at | title"),
    desc: bool = typer.Option(False, "--desc", help="Descending order"),
    limit: Optional[int] = typer.Option(None, "--limit", "-l"),
):
    """List the books in your library."""
    services = build_services()
    user = _require_login(services)
    entries = services.library.list_by_owner(
        user.email,
        status=status,
        favourite=True if favourites else None,
        sort_by=sort_by,
        descending=desc,
        limit=limit,
    )
    _print_entries(entries)


@app.command("update")
@handle_errors
def cli_update(
    entry_id: int = typer.Argument(..., help="Library entry id"),
    status: Optional[ReadingStatus] = typer.Option(None, "--status", "-s"),
    notes: Optional[str] = typer.Option(None, "--notes"),
    favourite: Optional[bool] = typer.Option(None, "--favourite/--no-favourite"),
):
    """Change the status, notes or favourite flag of a book."""
    services = build_services()
    _require_login(services)
    changes = {k: v for k, v in {"status": status, "notes": notes, "favourite": favourite}.items() if v is not None}
    if not changes:
        print("Nothing to update.")
        return
    entry = services.library.update(entry_id, **changes)
    if set(changes) == {"favourite"}:
        print("Added to favourites! ⭐" if entry.favourite else "Removed from favourites")
    else:
        print("Book updated successfully!")


@app.command("remove")
@handle_errors
def cli_remove(entry_id: int = typer.Argument(..., help="Library entry id")):
    """Remove a book from your library."""
    services = build_services()
    _require_login(services)
    entry = services.library.get(entry_id)
    services.library.remove(entry_id)
    print(f'"{entry.title}" removed from library')


@app.command("stats")
def cli_stats():
    """Show reading statistics."""
    services = build_services()
    user = _require_login(services)
    _print_stats(compute(services.library.list_by_owner(user.email)))


@app.command("serve")
def cli_serve(
    timeout: int = typer.Option(0, "--timeout", help="Seconds to run before shutting down (0 = no timeout)"),
    open_browser: bool = typer.Option(True, "--browser/--no-browser"),
):
    """Start the HTTP API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    url = f"http://{host}:{port}/docs"
    print(f"Starting API on http://{host}:{port}/")
    if open_browser:
        try:
            webbrowser.open(url)
        except webbrowser.Error as e:
            logger.warning(f"Could not open a browser: {e}")

    args = [
        sys.executable,
        "-m", "uvicorn",
        "bookfinder.api:app",
        "--host", host,
        "--port", str(port),
        "--log-level", settings.log_level.lower(),
    ]
    if timeout and timeout > 0:
        start_new_session = os.name != "nt"
        proc = subprocess.Popen(args, start_new_session=start_new_session)
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            # Time is up; try a clean shutdown first, then force it
            proc.terminate()
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait(timeout=3)
    else:
        if settings.debug:
            args.append("--reload")
        subprocess.run(args)


def main():
    app()


if __name__ == "__main__":
    main()
