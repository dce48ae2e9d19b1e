"""Tests for schema creation."""
import pytest
from sqlalchemy import func, select, text

from note_store.exceptions import ErrorCode, SchemaInitializationError
from note_store.models.db_models import TABLE_NAMES, DBUser
from note_store.models.schema import Note
from note_store.storage.connection import ConnectionProvider
from note_store.storage.note_repository import NoteRepository
from note_store.storage.schema_initializer import DEFAULT_USER, SchemaInitializer


def test_creates_all_tables(provider):
    initializer = SchemaInitializer(provider)
    assert initializer.table_names() == []

    initializer.initialize()

    assert initializer.table_names() == list(TABLE_NAMES)


def test_initialize_is_idempotent(initialized_provider, users):
    """Running again keeps existing tables and rows."""
    repository = NoteRepository(initialized_provider)
    note = repository.save_note(Note(user_id=1, title="Keep me", tags=["t"])).unwrap()

    SchemaInitializer(initialized_provider).initialize()
    SchemaInitializer(initialized_provider).initialize()

    assert repository.get_note_by_id(note.id).unwrap().tag_names == ["t"]


def test_seed_default_user(provider):
    initializer = SchemaInitializer(provider)
    initializer.initialize(seed_default_user=True)
    initializer.initialize(seed_default_user=True)

    with provider.session() as session:
        users = session.scalars(select(DBUser)).all()
    assert len(users) == 1
    assert users[0].id == DEFAULT_USER["id"]
    assert users[0].username == "testuser"
    assert users[0].email == "test@example.com"


def test_seed_skipped_when_user_exists(initialized_provider, add_user):
    add_user(1, "someone")
    SchemaInitializer(initialized_provider).initialize(seed_default_user=True)

    with initialized_provider.session() as session:
        assert session.scalar(select(func.count(DBUser.id))) == 1
        assert session.scalar(select(DBUser.username)) == "someone"


def test_defaults_applied_by_store(initialized_provider, users):
    """Boolean flags and tag color fall back to column defaults."""
    with initialized_provider.unit_of_work() as session:
        session.execute(text("INSERT INTO notes (user_id, title) VALUES (1, 'raw')"))
        session.execute(text("INSERT INTO tags (name, user_id) VALUES ('raw', 1)"))

    with initialized_provider.session() as session:
        assert session.execute(
            text("SELECT is_pinned, is_archived FROM notes WHERE title = 'raw'")
        ).one() == (0, 0)
        assert session.execute(
            text("SELECT color FROM tags WHERE name = 'raw'")
        ).scalar() == "#607D8B"


def test_failure_is_schema_error(db_config):
    with pytest.raises(SchemaInitializationError) as exc_info:
        SchemaInitializer(ConnectionProvider(db_config)).initialize()
    assert exc_info.value.code == ErrorCode.SCHEMA_INIT_FAILED
