import os
import json
from typing import Any, List
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from bookshelf.schemas import BooksSearchResponse, LibraryStats

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "BOOKSHELF_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _progress_bar(pct: int, width: int = 20) -> str:
    filled = round(width * pct / 100)
    return "█" * filled + "░" * (width - filled)


def print_list_result(books: List[Any], empty_message: str = "No books in library.") -> None:
    """Print tracked books in the current output mode.
    - plain: 'id - Title by Author [Status] page/total (pct%)' lines
    - json: array of the service's camelCase records
    - rich: table with a progress bar column
    """
    mode = get_output_mode()

    if not books:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Status", style="yellow")
        table.add_column("Progress", style="green")
        for b in books:
            fav = " ★" if b.is_favorite else ""
            table.add_row(
                b.id,
                b.title + fav,
                b.author,
                b.status.label,
                f"{_progress_bar(b.progress_percentage)} {b.current_page}/{b.total_pages} ({b.progress_percentage}%)",
            )
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{b.status.label}] "
                  f"{b.current_page}/{b.total_pages} ({b.progress_percentage}%)")


def print_stats_result(stats: LibraryStats) -> None:
    """Print library statistics in the current output mode."""
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(stats.model_dump(mode="json"), ensure_ascii=False))
        return

    rows = [
        ("Total Books", stats.total_books),
        ("Currently Reading", stats.currently_reading),
        ("Finished", stats.finished),
        ("Want to Read", stats.want_to_read),
        ("Paused", stats.paused),
        ("Did Not Finish", stats.did_not_finish),
        ("Favorites", stats.favorites),
        ("Average Rating", f"{stats.average_rating:.1f}"),
        ("Pages Read", stats.total_pages_read),
    ]
    if mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {value}" for label, value in rows)
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for label, value in rows:
            print(f"{label}: {value}")


def print_search_result(response: BooksSearchResponse) -> None:
    mode = get_output_mode()

    if not response.items:
        print("No results.")
        return

    if mode == "json":
        print(json.dumps(response.model_dump(by_alias=True, mode="json"), ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=f"🔍 {response.total_items} results", header_style="bold cyan")
        table.add_column("Catalog ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Authors", style="white")
        table.add_column("Pages", justify="right")
        for item in response.items:
            info = item.volume_info
            table.add_row(item.id, info.title, ", ".join(info.authors), str(info.page_count or "?"))
        _console.print(table)
    else:
        for item in response.items:
            info = item.volume_info
            authors = ", ".join(info.authors) or "Unknown author"
            print(f"{item.id} - {info.title} by {authors}")
