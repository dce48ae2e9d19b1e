"""Common test fixtures for the note store."""

import logging

import pytest

from note_store.config import DatabaseConfig
from note_store.models.db_models import DBUser
from note_store.models.schema import to_storage_time, utc_now
from note_store.observability import ROOT_LOGGER_NAME, metrics
from note_store.storage.connection import ConnectionProvider
from note_store.storage.note_repository import NoteRepository
from note_store.storage.schema_initializer import SchemaInitializer
from note_store.storage.tag_repository import TagRepository


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Isolate the global metrics collector between tests."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture(autouse=True)
def _detach_log_handlers():
    """Remove handlers installed by configure_logging during a test."""
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    before = list(root_logger.handlers)
    level = root_logger.level
    yield
    for handler in root_logger.handlers:
        if handler not in before:
            root_logger.removeHandler(handler)
            handler.close()
    root_logger.setLevel(level)


@pytest.fixture
def db_config(tmp_path):
    """File-backed SQLite database in a per-test temporary directory."""
    return DatabaseConfig(
        url=f"sqlite:///{tmp_path / 'notes.db'}",
        max_pool_size=5,
        min_idle=1,
        acquire_timeout=5,
    )


@pytest.fixture
def provider(db_config):
    """A started ConnectionProvider, stopped after the test."""
    provider = ConnectionProvider(db_config).start()
    yield provider
    provider.stop()


@pytest.fixture
def initialized_provider(provider):
    """Provider whose database has the schema created."""
    SchemaInitializer(provider).initialize()
    return provider


@pytest.fixture
def add_user(initialized_provider):
    """Factory inserting a user row and returning its id."""
    def _add_user(user_id: int, username: str = None) -> int:
        username = username or f"user{user_id}"
        now = to_storage_time(utc_now())
        with initialized_provider.unit_of_work("add_user") as session:
            session.add(
                DBUser(
                    id=user_id,
                    username=username,
                    email=f"{username}@example.com",
                    password_hash="x",
                    full_name=username.title(),
                    created_at=now,
                    updated_at=now,
                )
            )
        return user_id

    return _add_user


@pytest.fixture
def users(add_user):
    """Two users, ids 1 and 2."""
    return add_user(1, "alice"), add_user(2, "bob")


@pytest.fixture
def tag_repository(initialized_provider, users):
    return TagRepository(initialized_provider)


@pytest.fixture
def note_repository(initialized_provider, tag_repository):
    return NoteRepository(initialized_provider, tag_repository)
