"""Repository for tag storage and retrieval."""
import logging
from typing import Dict, List, Optional

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from note_store.exceptions import TagNotFoundError, ValidationError
from note_store.models.db_models import DBTag, note_tags
from note_store.models.schema import Tag, to_storage_time
from note_store.storage.base import Repository, repository_operation, translate_store_error
from note_store.storage.mapping import decode_tag

logger = logging.getLogger(__name__)


class TagRepository(Repository):
    """Repository for managing per-user tags.

    A tag is identified by ``(name, user_id)``: saving a tag whose name the
    user already has returns the existing tag instead of a duplicate.
    """

    # Session-scoped helpers, shared with NoteRepository so a note and its
    # tags are written on the same connection and transaction.

    @staticmethod
    def _by_name_query(name: str, user_id: int, locking: bool = False) -> Select:
        stmt = select(DBTag).where(DBTag.name == name, DBTag.user_id == user_id)
        if locking:
            # A locking read sees the latest committed row even under
            # REPEATABLE READ, where a plain SELECT keeps the old snapshot.
            stmt = stmt.with_for_update(read=True)
        return stmt

    @classmethod
    def _find_by_name(
        cls, session: Session, name: str, user_id: int, locking: bool = False
    ) -> Optional[DBTag]:
        return session.scalar(cls._by_name_query(name, user_id, locking))

    def save_or_get_in(
        self, session: Session, name: str, user_id: int, color: Optional[str] = None
    ) -> DBTag:
        """Return the user's tag called ``name``, inserting it if missing.

        The insert runs in a savepoint. If a concurrent writer inserted the
        same tag first, the unique constraint rejects ours and the lookup is
        retried once as a locking read; only the savepoint is rolled back, so
        the enclosing unit of work carries on.

        Raises:
            ConstraintViolationError: If the insert was rejected and the tag
                still cannot be found.
        """
        candidate = Tag(name=name, user_id=user_id, color=color)

        existing = self._find_by_name(session, candidate.name, user_id)
        if existing is not None:
            return existing

        db_tag = DBTag(
            name=candidate.name,
            user_id=user_id,
            color=candidate.color,
            created_at=to_storage_time(candidate.created_at),
        )
        try:
            with session.begin_nested():
                session.add(db_tag)
        except IntegrityError as e:
            existing = self._find_by_name(session, candidate.name, user_id, locking=True)
            if existing is None:
                raise translate_store_error(e, "save_or_get_tag") from e
            logger.debug(f"Tag '{candidate.name}' created concurrently, reusing it")
            return existing
        return db_tag

    def tags_for_note_in(self, session: Session, note_id: int) -> List[Tag]:
        """Decode the tags associated with a note."""
        rows = session.scalars(
            select(DBTag)
            .join(note_tags, DBTag.id == note_tags.c.tag_id)
            .where(note_tags.c.note_id == note_id)
            .order_by(DBTag.name)
        ).all()
        return [decode_tag(row) for row in rows]

    # Public operations

    @repository_operation()
    def save_or_get_tag(
        self, name: str, user_id: int, color: Optional[str] = None
    ) -> Tag:
        """Get the user's tag by name or create it.

        An existing tag is returned unchanged, even if ``color`` differs.

        Returns:
            Outcome carrying the stored Tag.
        """
        with self.provider.unit_of_work("save_or_get_tag") as session:
            tag = decode_tag(self.save_or_get_in(session, name, user_id, color))
        logger.info(f"Tag '{tag.name}' resolved with ID: {tag.id}")
        return tag

    @repository_operation()
    def update_tag(self, tag: Tag) -> Tag:
        """Rename or recolor a tag owned by ``tag.user_id``.

        Returns:
            Outcome carrying the updated Tag, or a TagNotFoundError failure
            when no tag with that id belongs to the user.
        """
        if tag.id is None:
            raise TagNotFoundError(user_id=tag.user_id, name=tag.name,
                                   message="Cannot update a tag without an ID")

        with self.provider.unit_of_work("update_tag") as session:
            result = session.execute(
                update(DBTag)
                .where(DBTag.id == tag.id, DBTag.user_id == tag.user_id)
                .values(name=tag.name, color=tag.color)
            )
            if result.rowcount == 0:
                raise TagNotFoundError(tag_id=tag.id, user_id=tag.user_id)
            updated = decode_tag(session.get(DBTag, tag.id, populate_existing=True))

        logger.info(f"Tag updated: {tag.id}")
        return updated

    @repository_operation()
    def delete_tag(self, tag_id: int, user_id: int) -> None:
        """Delete a tag and detach it from every note.

        Returns:
            Outcome with no value, or a TagNotFoundError failure (in which
            case nothing was deleted).
        """
        with self.provider.unit_of_work("delete_tag") as session:
            session.execute(delete(note_tags).where(note_tags.c.tag_id == tag_id))
            result = session.execute(
                delete(DBTag).where(DBTag.id == tag_id, DBTag.user_id == user_id)
            )
            if result.rowcount == 0:
                raise TagNotFoundError(tag_id=tag_id, user_id=user_id)
        logger.info(f"Tag deleted: {tag_id}")

    @repository_operation()
    def get_tag_by_id(self, tag_id: int, user_id: int) -> Tag:
        with self.provider.session() as session:
            row = session.scalar(
                select(DBTag).where(DBTag.id == tag_id, DBTag.user_id == user_id)
            )
            if row is None:
                raise TagNotFoundError(tag_id=tag_id, user_id=user_id)
            return decode_tag(row)

    @repository_operation()
    def get_tag_by_name_and_user(self, name: str, user_id: int) -> Tag:
        with self.provider.session() as session:
            row = self._find_by_name(session, name.strip(), user_id)
            if row is None:
                raise TagNotFoundError(user_id=user_id, name=name)
            return decode_tag(row)

    @repository_operation()
    def list_tags_for_user(self, user_id: int) -> List[Tag]:
        """All of a user's tags, alphabetically."""
        with self.provider.session() as session:
            rows = session.scalars(
                select(DBTag).where(DBTag.user_id == user_id).order_by(DBTag.name)
            ).all()
            return [decode_tag(row) for row in rows]

    @repository_operation()
    def get_tag_counts(self, user_id: int) -> Dict[str, int]:
        """Get the user's tags with their usage counts.

        Returns:
            Outcome carrying a mapping of tag name to number of notes.
        """
        with self.provider.session() as session:
            result = session.execute(
                select(DBTag.name, func.count(note_tags.c.note_id))
                .select_from(DBTag)
                .outerjoin(note_tags, DBTag.id == note_tags.c.tag_id)
                .where(DBTag.user_id == user_id)
                .group_by(DBTag.name)
            ).all()
            return {name: count for name, count in result}

    @repository_operation()
    def delete_unused_tags(self, user_id: int) -> int:
        """Delete the user's tags that no note references.

        Returns:
            Outcome carrying the number of tags deleted.
        """
        if user_id is None:
            raise ValidationError("user_id is required", field="user_id")
        with self.provider.unit_of_work("delete_unused_tags") as session:
            used = select(note_tags.c.tag_id)
            result = session.execute(
                delete(DBTag)
                .where(DBTag.user_id == user_id, DBTag.id.not_in(used))
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount
        if count:
            logger.info(f"Deleted {count} unused tags for user {user_id}")
        return count
