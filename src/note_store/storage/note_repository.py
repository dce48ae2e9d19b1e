"""Repository for note storage and retrieval.

Notes live in the ``notes`` table; their tags are attached through the
``note_tags`` junction table. Every write that touches more than one
statement runs in a single unit of work, and tags are always resolved by
name under the note owner's id.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.orm import Session

from note_store.exceptions import NoteNotFoundError, ValidationError
from note_store.models.db_models import DBNote, DBTag, note_tags
from note_store.models.schema import Note, Tag, to_storage_time, utc_now
from note_store.storage.base import Repository, repository_operation
from note_store.storage.connection import ConnectionProvider
from note_store.storage.mapping import decode_note
from note_store.storage.tag_repository import TagRepository
from note_store.utils import escape_like_pattern

logger = logging.getLogger(__name__)


class NoteRepository(Repository):
    """Repository for note storage operations."""

    def __init__(
        self,
        provider: ConnectionProvider,
        tag_repository: Optional[TagRepository] = None,
    ):
        """Initialize the repository.

        Args:
            provider: Shared ConnectionProvider.
            tag_repository: Repository used to resolve tags. Defaults to one
                on the same provider.
        """
        super().__init__(provider)
        self.tag_repository = tag_repository or TagRepository(provider)

    def _link_tags(
        self, session: Session, note_id: int, user_id: int, tags: Iterable[Tag]
    ) -> None:
        """Resolve ``tags`` under ``user_id`` and attach them to the note."""
        tag_ids: List[int] = []
        for tag in sorted(tags, key=lambda t: t.name):
            db_tag = self.tag_repository.save_or_get_in(
                session, tag.name, user_id, tag.color
            )
            if db_tag.id not in tag_ids:
                tag_ids.append(db_tag.id)
        if tag_ids:
            session.execute(
                insert(note_tags),
                [{"note_id": note_id, "tag_id": tag_id} for tag_id in tag_ids],
            )

    def _hydrate(self, session: Session, row: DBNote) -> Note:
        return decode_note(row, self.tag_repository.tags_for_note_in(session, row.id))

    def _hydrate_all(self, session: Session, rows: Iterable[DBNote]) -> List[Note]:
        return [self._hydrate(session, row) for row in rows]

    @repository_operation()
    def save_note(self, note: Note) -> Note:
        """Insert a new note together with its tags.

        Tags are deduplicated by name for the note's owner. Either the note,
        its tags and its associations are all stored, or nothing is.

        Args:
            note: A note without an id.

        Returns:
            Outcome carrying the stored note with its id and stored tags.
        """
        if note.id is not None:
            raise ValidationError(
                "Note already has an ID; use update_note", field="id", value=note.id
            )

        with self.provider.unit_of_work("save_note") as session:
            db_note = DBNote(
                user_id=note.user_id,
                title=note.title,
                content=note.content,
                is_pinned=note.is_pinned,
                is_archived=note.is_archived,
                created_at=to_storage_time(note.created_at),
                updated_at=to_storage_time(note.updated_at),
            )
            session.add(db_note)
            session.flush()
            self._link_tags(session, db_note.id, note.user_id, note.tags)
            saved = self._hydrate(session, db_note)

        logger.info(f"Note saved with ID: {saved.id}")
        return saved

    @repository_operation()
    def update_note(self, note: Note) -> Note:
        """Update a note's fields and replace its whole tag set.

        The row is matched by ``(id, user_id)``. The field update and the
        tag replacement commit together.

        Returns:
            Outcome carrying the updated note, or a NoteNotFoundError failure.
        """
        if note.id is None:
            raise NoteNotFoundError(
                None, note.user_id, message="Cannot update a note without an ID"
            )

        with self.provider.unit_of_work("update_note") as session:
            result = session.execute(
                update(DBNote)
                .where(DBNote.id == note.id, DBNote.user_id == note.user_id)
                .values(
                    title=note.title,
                    content=note.content,
                    is_pinned=note.is_pinned,
                    is_archived=note.is_archived,
                    updated_at=to_storage_time(utc_now()),
                )
            )
            if result.rowcount == 0:
                raise NoteNotFoundError(note.id, note.user_id)

            session.execute(delete(note_tags).where(note_tags.c.note_id == note.id))
            self._link_tags(session, note.id, note.user_id, note.tags)

            row = session.get(DBNote, note.id, populate_existing=True)
            updated = self._hydrate(session, row)

        logger.info(f"Note updated: {note.id}")
        return updated

    @repository_operation()
    def delete_note(self, note_id: int, user_id: Optional[int] = None) -> None:
        """Delete a note and its tag associations.

        Args:
            note_id: ID of the note.
            user_id: When given, only a note owned by this user is deleted.

        Returns:
            Outcome with no value, or a NoteNotFoundError failure (in which
            case nothing was deleted).
        """
        with self.provider.unit_of_work("delete_note") as session:
            session.execute(delete(note_tags).where(note_tags.c.note_id == note_id))
            stmt = delete(DBNote).where(DBNote.id == note_id)
            if user_id is not None:
                stmt = stmt.where(DBNote.user_id == user_id)
            if session.execute(stmt).rowcount == 0:
                raise NoteNotFoundError(note_id, user_id)
        logger.info(f"Note deleted: {note_id}")

    @repository_operation()
    def get_note_by_id(self, note_id: int, user_id: Optional[int] = None) -> Note:
        """Get a note with its tags.

        Args:
            note_id: ID of the note.
            user_id: When given, a note owned by someone else is reported
                as not found.
        """
        with self.provider.session() as session:
            stmt = select(DBNote).where(DBNote.id == note_id)
            if user_id is not None:
                stmt = stmt.where(DBNote.user_id == user_id)
            row = session.scalar(stmt)
            if row is None:
                raise NoteNotFoundError(note_id, user_id)
            return self._hydrate(session, row)

    @repository_operation()
    def list_notes_for_user(self, user_id: int) -> List[Note]:
        """All of a user's notes, most recently updated first."""
        with self.provider.session() as session:
            rows = session.scalars(
                select(DBNote)
                .where(DBNote.user_id == user_id)
                .order_by(DBNote.updated_at.desc(), DBNote.id.desc())
            ).all()
            return self._hydrate_all(session, rows)

    @repository_operation()
    def search_notes(self, user_id: int, text: str) -> List[Note]:
        """Case-insensitive substring search over title and content.

        ``text`` is matched literally: ``%`` and ``_`` are not wildcards.

        Returns:
            Outcome carrying matching notes, most recently updated first.
        """
        if text is None:
            raise ValidationError("Search text is required", field="text")
        pattern = f"%{escape_like_pattern(text.lower())}%"
        with self.provider.session() as session:
            rows = session.scalars(
                select(DBNote)
                .where(
                    DBNote.user_id == user_id,
                    or_(
                        func.lower(DBNote.title).like(pattern, escape="\\"),
                        func.lower(DBNote.content).like(pattern, escape="\\"),
                    ),
                )
                .order_by(DBNote.updated_at.desc(), DBNote.id.desc())
            ).all()
            return self._hydrate_all(session, rows)

    @repository_operation()
    def find_notes_by_tag(self, user_id: int, tag_name: str) -> List[Note]:
        """A user's notes carrying the tag called ``tag_name``."""
        with self.provider.session() as session:
            rows = session.scalars(
                select(DBNote)
                .join(note_tags, DBNote.id == note_tags.c.note_id)
                .join(DBTag, DBTag.id == note_tags.c.tag_id)
                .where(
                    DBNote.user_id == user_id,
                    DBTag.user_id == user_id,
                    DBTag.name == tag_name.strip(),
                )
                .order_by(DBNote.updated_at.desc(), DBNote.id.desc())
            ).all()
            return self._hydrate_all(session, rows)

    @repository_operation()
    def count_notes_for_user(self, user_id: int) -> int:
        with self.provider.session() as session:
            return session.scalar(
                select(func.count(DBNote.id)).where(DBNote.user_id == user_id)
            )
