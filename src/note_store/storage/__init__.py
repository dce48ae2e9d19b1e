"""Storage layer for the note store."""
from note_store.storage.connection import ConnectionProvider
from note_store.storage.note_repository import NoteRepository
from note_store.storage.schema_initializer import SchemaInitializer
from note_store.storage.tag_repository import TagRepository

__all__ = [
    "ConnectionProvider",
    "NoteRepository",
    "SchemaInitializer",
    "TagRepository",
]
