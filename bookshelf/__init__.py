"""Bookshelf - Reading Tracker Client Package

This package contains the client-side modules of the reading tracker:
- Tracked book model (tracked_book.py)
- Optimistic progress updates (progress_sync.py)
- Debounced page edits (debounce.py)
- Library facade (library.py)
- CLI interface (cli.py)
"""

__version__ = "1.0.0"
