"""Tests for the error taxonomy, Outcome and the repository boundary."""
import datetime
from datetime import timezone

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from note_store.exceptions import (ConnectionUnavailableError,
                                   ConstraintViolationError, DecodeError,
                                   ErrorCode, NoteNotFoundError,
                                   NoteStoreError, NotFoundError, StorageError,
                                   TagNotFoundError, TransactionFailureError,
                                   ValidationError)
from note_store.models.db_models import DBNote, DBTag
from note_store.models.results import Outcome
from note_store.models.schema import Tag
from note_store.observability import metrics
from note_store.storage.base import repository_operation, translate_store_error
from note_store.storage.mapping import decode_note, decode_tag

STAMP = datetime.datetime(2024, 5, 1, 9, 30)


class TestErrors:
    def test_str_includes_code_and_details(self):
        error = NoteNotFoundError(7, user_id=2)
        assert str(error) == "[NOTE_NOT_FOUND] Note with ID '7' not found (entity=note, id=7, user_id=2)"

    def test_to_dict(self):
        data = TagNotFoundError(name="work", user_id=1).to_dict()
        assert data["error"] == "TagNotFoundError"
        assert data["code"] == ErrorCode.TAG_NOT_FOUND.value
        assert data["code_name"] == "TAG_NOT_FOUND"
        assert data["details"]["name"] == "work"

    def test_hierarchy(self):
        assert issubclass(NoteNotFoundError, NotFoundError)
        assert issubclass(TagNotFoundError, NotFoundError)
        for cls in (ConnectionUnavailableError, ConstraintViolationError,
                    TransactionFailureError, StorageError, DecodeError, ValidationError):
            assert issubclass(cls, NoteStoreError)

    def test_original_error_is_truncated(self):
        error = StorageError("failed", original_error=Exception("x" * 500))
        assert len(error.details["original_error"]) == 200


class TestOutcome:
    def test_success(self):
        outcome = Outcome.success(5, operation="count")
        assert outcome.ok
        assert bool(outcome)
        assert outcome.unwrap() == 5
        assert outcome.to_dict() == {"status": "ok", "operation": "count"}

    def test_failure(self):
        error = NoteNotFoundError(1)
        outcome = Outcome.failure(error, operation="get_note_by_id")
        assert not outcome.ok
        assert not outcome
        assert outcome.value is None
        with pytest.raises(NoteNotFoundError):
            outcome.unwrap()
        assert outcome.to_dict()["error"]["code_name"] == "NOTE_NOT_FOUND"


class TestTranslateStoreError:
    def _integrity(self, message):
        return IntegrityError("INSERT", {}, Exception(message))

    def test_unique_tag(self):
        error = translate_store_error(
            self._integrity("UNIQUE constraint failed: tags.name, tags.user_id"), "save"
        )
        assert isinstance(error, ConstraintViolationError)
        assert error.code == ErrorCode.DUPLICATE_TAG
        assert error.constraint == "unique_tag_per_user"

    def test_mysql_duplicate_key(self):
        error = translate_store_error(
            self._integrity("Duplicate entry 'work-1' for key 'unique_tag_per_user'"), "save"
        )
        assert error.code == ErrorCode.DUPLICATE_TAG

    def test_foreign_key(self):
        error = translate_store_error(self._integrity("FOREIGN KEY constraint failed"), "save")
        assert error.code == ErrorCode.FOREIGN_KEY_VIOLATION

    def test_pool_timeout(self):
        error = translate_store_error(PoolTimeoutError("QueuePool limit"), "read")
        assert isinstance(error, ConnectionUnavailableError)
        assert error.code == ErrorCode.POOL_EXHAUSTED

    def test_connection_invalidated(self):
        exc = OperationalError("SELECT 1", {}, Exception("gone away"), connection_invalidated=True)
        assert isinstance(translate_store_error(exc, "read"), ConnectionUnavailableError)

    def test_in_and_out_of_transaction(self):
        exc = OperationalError("SELECT 1", {}, Exception("locked"))
        assert isinstance(translate_store_error(exc, "w", in_transaction=True), TransactionFailureError)
        assert isinstance(translate_store_error(exc, "r"), StorageError)


class TestRepositoryOperation:
    """Tests for the Outcome boundary."""

    def test_success_records_metrics(self):
        @repository_operation("sample_read")
        def read():
            return [1, 2, 3]

        outcome = read()
        assert outcome.ok
        assert outcome.value == [1, 2, 3]
        assert outcome.operation == "sample_read"
        assert metrics.get_metrics()["sample_read"]["success_count"] == 1

    def test_typed_error_becomes_failure(self):
        @repository_operation()
        def lookup(note_id):
            raise NoteNotFoundError(note_id)

        outcome = lookup(note_id=3)
        assert isinstance(outcome.error, NoteNotFoundError)
        assert outcome.operation == "lookup"
        assert metrics.get_metrics()["lookup"]["error_count"] == 1

    def test_store_error_is_translated(self):
        @repository_operation()
        def broken():
            raise OperationalError("SELECT", {}, Exception("no such table"))

        outcome = broken()
        assert isinstance(outcome.error, StorageError)
        assert isinstance(outcome.error.__cause__, OperationalError)

    def test_pydantic_error_is_validation_error(self):
        @repository_operation()
        def build():
            return Tag(name="", user_id=1)

        outcome = build()
        assert isinstance(outcome.error, ValidationError)
        assert outcome.error.field == "name"

    def test_programming_errors_propagate(self):
        @repository_operation()
        def buggy():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            buggy()

    def test_not_found_logged_as_warning(self, caplog):
        @repository_operation()
        def missing():
            raise TagNotFoundError(tag_id=1)

        with caplog.at_level("WARNING", logger="note_store"):
            missing()
        assert any(r.levelname == "WARNING" and "missing failed" in r.getMessage()
                   for r in caplog.records)


class TestDecode:
    def test_decode_tag(self):
        row = DBTag(id=1, name="work", user_id=2, color="#112233", created_at=STAMP)
        tag = decode_tag(row)
        assert tag.id == 1
        assert tag.color == "#112233"
        assert tag.created_at == STAMP.replace(tzinfo=timezone.utc)

    def test_decode_tag_missing_id(self):
        with pytest.raises(DecodeError):
            decode_tag(DBTag(name="work", user_id=2, created_at=STAMP))

    def test_decode_tag_missing_created_at(self):
        with pytest.raises(DecodeError) as exc_info:
            decode_tag(DBTag(id=1, name="work", user_id=2, created_at=None))
        assert "created_at" in exc_info.value.message

    def test_decode_tag_bad_color(self):
        row = DBTag(id=1, name="work", user_id=2, color="purple", created_at=STAMP)
        with pytest.raises(DecodeError) as exc_info:
            decode_tag(row)
        assert exc_info.value.code == ErrorCode.DECODE_FAILED
        assert exc_info.value.row_id == 1

    def test_decode_note_bad_title(self):
        row = DBNote(id=4, user_id=1, title="", is_pinned=False, is_archived=False,
                     created_at=STAMP, updated_at=STAMP)
        with pytest.raises(DecodeError):
            decode_note(row)

    @pytest.mark.parametrize("column", ["created_at", "updated_at"])
    def test_decode_note_missing_timestamp(self, column):
        row = DBNote(id=4, user_id=1, title="T", is_pinned=False, is_archived=False,
                     created_at=STAMP, updated_at=STAMP)
        setattr(row, column, None)
        with pytest.raises(DecodeError) as exc_info:
            decode_note(row)
        assert column in exc_info.value.message
        assert exc_info.value.row_id == 4

    def test_decode_note_with_tags(self):
        row = DBNote(id=4, user_id=1, title="T", content=None, is_pinned=1, is_archived=0,
                     created_at=STAMP, updated_at=STAMP)
        note = decode_note(row, [Tag(id=9, name="x", user_id=1)])
        assert note.is_pinned is True
        assert note.tag_names == ["x"]
