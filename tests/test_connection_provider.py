"""Tests for the ConnectionProvider pool and unit of work."""
import time

import pytest
from sqlalchemy import event, func, select, text

from note_store.config import DatabaseConfig
from note_store.exceptions import (ConnectionUnavailableError,
                                   ConstraintViolationError, ErrorCode,
                                   NoteNotFoundError, TransactionFailureError)
from note_store.models.db_models import DBUser
from note_store.models.schema import Note
from note_store.storage.connection import ConnectionProvider
from note_store.storage.note_repository import NoteRepository
from note_store.storage.schema_initializer import SchemaInitializer


def _user_count(provider):
    with provider.session() as session:
        return session.scalar(select(func.count(DBUser.id)))


class TestLifecycle:
    """Tests for start/stop."""

    def test_start_and_stop(self, db_config):
        provider = ConnectionProvider(db_config)
        assert not provider.is_started

        assert provider.start() is provider
        assert provider.is_started
        assert provider.ping()

        provider.stop()
        assert not provider.is_started

    def test_start_is_idempotent(self, provider):
        engine = provider.engine
        provider.start()
        assert provider.engine is engine

    def test_stop_before_start_is_noop(self, db_config):
        provider = ConnectionProvider(db_config)
        provider.stop()
        provider.stop()
        assert not provider.is_started

    def test_context_manager(self, db_config):
        with ConnectionProvider(db_config) as provider:
            assert provider.ping()
        assert not provider.is_started

    def test_start_with_config_argument(self, db_config):
        provider = ConnectionProvider().start(db_config)
        try:
            assert provider.config is db_config
        finally:
            provider.stop()

    def test_acquire_before_start(self, db_config):
        with pytest.raises(ConnectionUnavailableError) as exc_info:
            ConnectionProvider(db_config).acquire()
        assert exc_info.value.code == ErrorCode.PROVIDER_NOT_STARTED

    def test_engine_before_start(self, db_config):
        with pytest.raises(ConnectionUnavailableError):
            ConnectionProvider(db_config).engine

    def test_unreachable_store(self, tmp_path):
        config = DatabaseConfig(url=f"sqlite:///{tmp_path / 'missing' / 'dir' / 'notes.db'}")
        provider = ConnectionProvider(config)
        with pytest.raises(ConnectionUnavailableError) as exc_info:
            provider.start()
        assert exc_info.value.code == ErrorCode.CONNECTION_UNAVAILABLE
        assert not provider.is_started

    def test_failing_liveness_probe(self, tmp_path):
        config = DatabaseConfig(
            url=f"sqlite:///{tmp_path / 'notes.db'}",
            liveness_query="SELECT * FROM no_such_table",
        )
        with pytest.raises(ConnectionUnavailableError):
            ConnectionProvider(config).start()

    def test_sqlite_pragmas(self, provider):
        with provider.session() as session:
            assert session.execute(text("PRAGMA foreign_keys")).scalar() == 1
            assert session.execute(text("PRAGMA journal_mode")).scalar() == "wal"

    def test_sqlite_lower_folds_unicode(self, provider):
        with provider.session() as session:
            assert session.execute(text("SELECT lower('ÉQUIPE Über')")).scalar() == "équipe über"
            assert session.execute(text("SELECT lower(NULL)")).scalar() is None

    def test_in_memory_database(self):
        config = DatabaseConfig(url="sqlite://")
        with ConnectionProvider(config) as provider:
            SchemaInitializer(provider).initialize(seed_default_user=True)
            repository = NoteRepository(provider)
            saved = repository.save_note(Note(user_id=1, title="Memo", tags=["m"])).unwrap()
            assert repository.get_note_by_id(saved.id).unwrap().tag_names == ["m"]


class TestPool:
    """Tests for pool bounds."""

    def test_exhausted_pool_times_out(self, tmp_path):
        config = DatabaseConfig(
            url=f"sqlite:///{tmp_path / 'notes.db'}",
            max_pool_size=1,
            min_idle=1,
            acquire_timeout=0.2,
        )
        with ConnectionProvider(config) as provider:
            SchemaInitializer(provider).initialize()
            held = provider.acquire()
            try:
                with pytest.raises(ConnectionUnavailableError) as exc_info:
                    provider.acquire()
                assert exc_info.value.code == ErrorCode.POOL_EXHAUSTED

                outcome = NoteRepository(provider).list_notes_for_user(1)
                assert not outcome.ok
                assert isinstance(outcome.error, ConnectionUnavailableError)
            finally:
                provider.release(held)

            assert NoteRepository(provider).list_notes_for_user(1).ok

    def test_release_returns_connection(self, tmp_path):
        config = DatabaseConfig(
            url=f"sqlite:///{tmp_path / 'notes.db'}",
            max_pool_size=1,
            min_idle=0,
            acquire_timeout=0.2,
        )
        with ConnectionProvider(config) as provider:
            for _ in range(5):
                with provider.session() as session:
                    session.execute(text("SELECT 1"))

    def test_min_idle_opened_at_start(self, tmp_path):
        config = DatabaseConfig(
            url=f"sqlite:///{tmp_path / 'notes.db'}",
            max_pool_size=5,
            min_idle=3,
        )
        with ConnectionProvider(config) as provider:
            assert provider.engine.pool.checkedin() == 3
            assert provider.engine.pool.checkedout() == 0

    def test_idle_connections_are_replaced(self, tmp_path):
        config = DatabaseConfig(
            url=f"sqlite:///{tmp_path / 'notes.db'}",
            max_pool_size=1,
            min_idle=1,
            idle_timeout=0.5,
        )
        with ConnectionProvider(config) as provider:
            connects = []
            event.listen(provider.engine, "connect", lambda *args: connects.append(1))

            with provider.session():
                pass
            assert connects == []

            time.sleep(0.7)
            with provider.session() as session:
                assert session.execute(text("SELECT 1")).scalar() == 1
            assert connects == [1]


class TestUnitOfWork:
    """Tests for the transactional scope."""

    def _insert_user(self, session, user_id, username=None):
        username = username or f"u{user_id}"
        session.add(DBUser(id=user_id, username=username, email=f"u{user_id}@x.org",
                           password_hash="x"))
        session.flush()

    def test_commits_on_success(self, initialized_provider):
        with initialized_provider.unit_of_work() as session:
            self._insert_user(session, 10)
        assert _user_count(initialized_provider) == 1

    def test_rolls_back_on_typed_error(self, initialized_provider):
        with pytest.raises(NoteNotFoundError):
            with initialized_provider.unit_of_work() as session:
                self._insert_user(session, 10)
                raise NoteNotFoundError(1)
        assert _user_count(initialized_provider) == 0

    def test_rolls_back_on_unexpected_error(self, initialized_provider):
        with pytest.raises(RuntimeError):
            with initialized_provider.unit_of_work() as session:
                self._insert_user(session, 10)
                raise RuntimeError("boom")
        assert _user_count(initialized_provider) == 0

    def test_integrity_error_translated(self, initialized_provider):
        with pytest.raises(ConstraintViolationError) as exc_info:
            with initialized_provider.unit_of_work("insert_twice") as session:
                self._insert_user(session, 10, "same")
                self._insert_user(session, 11, "same")
        assert exc_info.value.original_error is not None
        assert _user_count(initialized_provider) == 0

    def test_other_store_errors_translated(self, initialized_provider):
        with pytest.raises(TransactionFailureError) as exc_info:
            with initialized_provider.unit_of_work("bad_sql") as session:
                self._insert_user(session, 10)
                session.execute(text("SELECT * FROM no_such_table"))
        assert exc_info.value.operation == "bad_sql"
        assert _user_count(initialized_provider) == 0
