"""
note-store - relational persistence for user notes and tags.

This package implements the storage core of a note taking application: a
bounded connection pool, idempotent schema creation, and repositories that
keep the many-to-many note/tag association consistent.

All operations are synchronous.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("note-store")
except PackageNotFoundError:
    __version__ = "0.1.0"
