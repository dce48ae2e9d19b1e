"""Idempotent creation of the note store schema."""
import logging
from typing import List

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError

from note_store.exceptions import NoteStoreError, SchemaInitializationError
from note_store.models.db_models import TABLE_NAMES, Base, DBUser
from note_store.models.schema import to_storage_time, utc_now
from note_store.observability import timed_operation
from note_store.storage.connection import ConnectionProvider

logger = logging.getLogger(__name__)

# Development account seeded on request; its hash is for the password "password"
DEFAULT_USER = {
    "id": 1,
    "username": "testuser",
    "email": "test@example.com",
    "password_hash": "$2a$10$XgNEHAr1E3JWAXjmQGfnZOEUZojLImJY8djrR2S8QglyK1ZhNO5Y.",
    "full_name": "Test User",
}


class SchemaInitializer:
    """Creates the users, notes, tags, note_tags and reminders tables."""

    def __init__(self, provider: ConnectionProvider):
        self.provider = provider

    def initialize(self, seed_default_user: bool = False) -> None:
        """Create any missing tables; existing tables and rows are untouched.

        Args:
            seed_default_user: Also insert the development user (id 1)
                when no user with that id exists.

        Raises:
            SchemaInitializationError: If the schema cannot be created. The
                store is unusable in that case.
        """
        with timed_operation("initialize_schema") as op:
            try:
                Base.metadata.create_all(self.provider.engine)
                if seed_default_user:
                    op["seeded"] = self._seed_default_user()
            except (NoteStoreError, SQLAlchemyError) as e:
                raise SchemaInitializationError(
                    f"Failed to initialize schema: {e}", original_error=e
                ) from e
        logger.info("Database schema initialized")

    def _seed_default_user(self) -> bool:
        with self.provider.unit_of_work("seed_default_user") as session:
            existing = session.scalar(
                select(DBUser.id).where(DBUser.id == DEFAULT_USER["id"])
            )
            if existing is not None:
                return False
            now = to_storage_time(utc_now())
            session.add(DBUser(created_at=now, updated_at=now, **DEFAULT_USER))
        logger.info(f"Seeded default user '{DEFAULT_USER['username']}'")
        return True

    def table_names(self) -> List[str]:
        """Names of the note store tables that currently exist."""
        existing = set(inspect(self.provider.engine).get_table_names())
        return [name for name in TABLE_NAMES if name in existing]
