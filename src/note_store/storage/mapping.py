"""Row to domain model conversion."""
from typing import Iterable

from pydantic import ValidationError as PydanticValidationError

from note_store.exceptions import DecodeError
from note_store.models.db_models import DBNote, DBTag
from note_store.models.schema import Note, Tag, ensure_timezone_aware


def _missing_columns(row, columns) -> list:
    return [column for column in columns if getattr(row, column, None) is None]


def decode_tag(row: DBTag) -> Tag:
    """Build a Tag from a tags row.

    Raises:
        DecodeError: If the row is missing required columns or holds
            values the model rejects.
    """
    row_id = getattr(row, "id", None)
    missing = _missing_columns(row, ("id", "user_id", "created_at"))
    if missing:
        raise DecodeError(
            f"Tag row is missing required columns: {', '.join(missing)}",
            entity="tag",
            row_id=row_id,
        )
    try:
        return Tag(
            id=row.id,
            name=row.name,
            user_id=row.user_id,
            color=row.color,
            created_at=ensure_timezone_aware(row.created_at),
        )
    except (PydanticValidationError, TypeError) as e:
        raise DecodeError(
            f"Malformed tag row: {e}", entity="tag", row_id=row_id, original_error=e
        ) from e


def decode_note(row: DBNote, tags: Iterable[Tag] = ()) -> Note:
    """Build a Note from a notes row and its already-decoded tags.

    Raises:
        DecodeError: If the row is missing required columns or holds
            values the model rejects.
    """
    row_id = getattr(row, "id", None)
    missing = _missing_columns(row, ("id", "user_id", "created_at", "updated_at"))
    if missing:
        raise DecodeError(
            f"Note row is missing required columns: {', '.join(missing)}",
            entity="note",
            row_id=row_id,
        )
    try:
        return Note(
            id=row.id,
            user_id=row.user_id,
            title=row.title,
            content=row.content,
            is_pinned=bool(row.is_pinned),
            is_archived=bool(row.is_archived),
            created_at=ensure_timezone_aware(row.created_at),
            updated_at=ensure_timezone_aware(row.updated_at),
            tags=frozenset(tags),
        )
    except (PydanticValidationError, TypeError) as e:
        raise DecodeError(
            f"Malformed note row: {e}", entity="note", row_id=row_id, original_error=e
        ) from e
