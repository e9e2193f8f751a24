"""User-facing notifications (toast messages) for library actions."""

import logging
from typing import Optional, Protocol

from rich.console import Console
from rich.markup import escape

logger = logging.getLogger(__name__)

PROGRESS_UPDATED = "Progress updated to page {page}"
PROGRESS_SAVED = "Progress updated successfully!"
PROGRESS_FAILED = "Failed to update progress. Please try again."
STATUS_UPDATED = 'Book status updated to "{status}"'
STATUS_FAILED = "Failed to update status. Please try again."
BOOK_ADDED = "Book added to your library successfully!"
ADD_FAILED = "Failed to add book. Please try again."
BOOK_REMOVED = '"{title}" has been removed from your library.'
REMOVE_FAILED = "Failed to remove book. Please try again."


class Notifier(Protocol):
    def success(self, message: str) -> None: ...

    def failure(self, message: str) -> None: ...


class ConsoleNotifier:
    """Prints notifications with rich."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def success(self, message: str) -> None:
        logger.debug(message)
        self.console.print(f"[green]✓[/] {escape(message)}")

    def failure(self, message: str) -> None:
        logger.debug(message)
        self.console.print(f"[bold red]✗[/] {escape(message)}")
