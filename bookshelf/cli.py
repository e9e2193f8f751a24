import asyncio
import logging
from typing import Awaitable, List, Optional

import typer

from bookshelf.config import settings
from bookshelf.library import ReadingLibrary
from bookshelf.notifications import ConsoleNotifier
from bookshelf.services.books_service import AuthenticationError, BooksService, LibraryAPIError
from bookshelf.tracked_book import ReadingStatus, TrackedBook
from bookshelf.utils.ui_helpers import (
    print_list_result,
    print_search_result,
    print_stats_result,
    set_output_mode,
)

app = typer.Typer(help=f"{settings.app_name}: track your reading from the terminal")


def build_library() -> ReadingLibrary:
    """Library wired to the configured service."""
    return ReadingLibrary(BooksService(), notifier=ConsoleNotifier())


def _run(coro: Awaitable[None]) -> None:
    """Run one command's coroutine and turn known failures into an exit code."""
    try:
        asyncio.run(coro)
    except AuthenticationError:
        print("Error: not authenticated. Set BOOKSHELF_API_TOKEN.")
        raise typer.Exit(code=1)
    except LibraryAPIError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    except LookupError as e:
        print(f"Not found: {e}")
        raise typer.Exit(code=1)


def _parse_status(raw: Optional[str]) -> Optional[ReadingStatus]:
    if raw is None:
        return None
    try:
        return ReadingStatus.parse(raw)
    except ValueError as e:
        choices = ", ".join(s.name for s in ReadingStatus)
        raise typer.BadParameter(f"{e}. Choose one of: {choices}")


def _parse_steps(raw: str) -> List[int]:
    """'+1,+1,-1' -> [1, 1, -1]"""
    steps = []
    for part in raw.replace(" ", "").split(","):
        if not part:
            continue
        try:
            steps.append(int(part))
        except ValueError:
            raise typer.BadParameter(f"Invalid step {part!r}; use signed integers such as +1,-2")
    if not steps:
        raise typer.BadParameter("At least one step is required")
    return steps


def _print_book(book: TrackedBook) -> None:
    print_list_result([book])


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Global options (output mode, logging)."""
    level = logging.DEBUG if (verbose or settings.debug) else getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if output:
        set_output_mode(output)


@app.command("list")
def cli_list(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Only books with this status"),
    favorites: bool = typer.Option(False, "--favorites", "-f", help="Only favorites"),
):
    """List the books in your library."""
    reading_status = _parse_status(status)
    is_favorite = True if favorites else None

    async def run():
        async with build_library() as lib:
            await lib.load_library(status=reading_status, is_favorite=is_favorite)
            print_list_result(lib.visible_books(status=reading_status, is_favorite=is_favorite))

    _run(run())


@app.command("reading")
def cli_reading():
    """List the books you are currently reading."""
    async def run():
        async with build_library() as lib:
            await lib.currently_reading()
            print_list_result(lib.visible_books(status=ReadingStatus.READING),
                              empty_message="You are not reading anything right now.")

    _run(run())


@app.command("stats")
def cli_stats():
    """Show library statistics."""
    async def run():
        async with build_library() as lib:
            print_stats_result(await lib.load_stats())

    _run(run())


@app.command("search")
def cli_search(
    query: str = typer.Argument(..., help="Search query (title, author, ISBN)"),
    limit: int = typer.Option(settings.default_search_results, "--limit", "-l", help="Maximum results"),
    start: int = typer.Option(0, "--start", help="Index of the first result"),
):
    """Search the book catalog."""
    async def run():
        async with build_library() as lib:
            print_search_result(await lib.search_books(query, max_results=limit, start_index=start))

    _run(run())


@app.command("add")
def cli_add(
    catalog_id: str = typer.Argument(..., help="Catalog (Google Books) id from `search`"),
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Initial status"),
    favorite: bool = typer.Option(False, "--favorite", "-f", help="Mark as favorite"),
):
    """Add a catalog book to your library."""
    reading_status = _parse_status(status)

    async def run():
        async with build_library() as lib:
            book = await lib.add_book(catalog_id, status=reading_status, is_favorite=True if favorite else None)
            _print_book(book)

    _run(run())


@app.command("remove")
def cli_remove(book_id: str = typer.Argument(..., help="Tracked book id from `list`")):
    """Remove a book from your library."""
    async def run():
        async with build_library() as lib:
            await lib.load_library()
            if not await lib.remove_book(book_id):
                raise typer.Exit(code=1)

    _run(run())


async def _commit_and_report(lib: ReadingLibrary, book_id: str, task: "asyncio.Task") -> None:
    await lib.flush()
    if task.cancelled() or task.exception() is not None:
        raise typer.Exit(code=1)
    _print_book(lib.find_book(book_id))


@app.command("progress")
def cli_progress(
    book_id: str = typer.Argument(..., help="Tracked book id"),
    page: int = typer.Argument(..., help="Page you are on"),
):
    """Set the current page of a book."""
    async def run():
        async with build_library() as lib:
            await lib.load_library()
            await _commit_and_report(lib, book_id, lib.submit_absolute_page(book_id, page))

    _run(run())


@app.command("bump")
def cli_bump(
    book_id: str = typer.Argument(..., help="Tracked book id"),
    steps: str = typer.Argument(..., help="Comma separated page steps, e.g. +1,+1,-1"),
):
    """Move the current page by several quick steps, sent as a single update."""
    deltas = _parse_steps(steps)

    async def run():
        async with build_library() as lib:
            await lib.load_library()
            for delta in deltas:
                visible = lib.submit_delta(book_id, delta)
                print(f"{delta:+d} -> page {visible.current_page}/{visible.total_pages}")
            await lib.flush()
            _print_book(lib.find_book(book_id))

    _run(run())


@app.command("status")
def cli_status(
    book_id: str = typer.Argument(..., help="Tracked book id"),
    status: str = typer.Argument(..., help="WANT_TO_READ, READING, FINISHED, PAUSED or ABANDONED"),
):
    """Change the reading status of a book."""
    reading_status = _parse_status(status)

    async def run():
        async with build_library() as lib:
            await lib.load_library()
            await _commit_and_report(lib, book_id, lib.submit_status_change(book_id, reading_status))

    _run(run())


@app.command("favorite")
def cli_favorite(
    book_id: str = typer.Argument(..., help="Tracked book id"),
    off: bool = typer.Option(False, "--off", help="Remove from favorites instead"),
):
    """Mark a book as favorite (or unmark it with --off)."""
    async def run():
        async with build_library() as lib:
            await lib.load_library()
            await _commit_and_report(lib, book_id, lib.submit_favorite(book_id, not off))

    _run(run())


if __name__ == "__main__":
    app()
