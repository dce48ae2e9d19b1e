"""Tests for callers sharing one provider from several threads."""

import threading
from typing import List

from sqlalchemy import func, select

from note_store.models.db_models import DBTag
from note_store.models.results import Outcome
from note_store.models.schema import Note


def _run_threads(count: int, target) -> List[Exception]:
    errors: List[Exception] = []
    lock = threading.Lock()

    def wrapper(index: int):
        try:
            target(index)
        except Exception as e:
            with lock:
                errors.append(e)

    threads = [threading.Thread(target=wrapper, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return errors


class TestConcurrentAccess:
    """Tests for concurrent access patterns."""

    def test_concurrent_tag_creation_dedups(self, tag_repository, initialized_provider):
        """Every thread asking for the same tag gets the same row."""
        outcomes: List[Outcome] = []
        lock = threading.Lock()

        def create(index: int):
            outcome = tag_repository.save_or_get_tag("shared", 1)
            with lock:
                outcomes.append(outcome)

        errors = _run_threads(8, create)

        assert errors == []
        assert all(o.ok for o in outcomes), [o.error for o in outcomes if not o.ok]
        assert len({o.value.id for o in outcomes}) == 1
        with initialized_provider.session() as session:
            assert session.scalar(
                select(func.count(DBTag.id)).where(DBTag.name == "shared")
            ) == 1

    def test_concurrent_note_saves_share_tags(self, note_repository, tag_repository):
        saved: List[Note] = []
        lock = threading.Lock()

        def create(index: int):
            note = note_repository.save_note(
                Note(user_id=1, title=f"Note {index}", tags=["common", f"own-{index}"])
            ).unwrap()
            with lock:
                saved.append(note)

        errors = _run_threads(6, create)

        assert errors == []
        assert len({n.id for n in saved}) == 6
        counts = tag_repository.get_tag_counts(1).unwrap()
        assert counts["common"] == 6
        assert len(counts) == 7

    def test_readers_and_writers(self, note_repository):
        for i in range(3):
            note_repository.save_note(Note(user_id=1, title=f"Seed {i}")).unwrap()

        def work(index: int):
            if index % 2:
                note_repository.save_note(Note(user_id=1, title=f"W {index}")).unwrap()
            else:
                assert len(note_repository.list_notes_for_user(1).unwrap()) >= 3

        errors = _run_threads(8, work)

        assert errors == []
        assert note_repository.count_notes_for_user(1).unwrap() == 7
