"""Bookshelf - Services Package

This package contains service modules for the library REST API:
- Books service (catalog search and tracked books)
- Query cache store
- HTTP client abstraction
"""
