"""Data models for the note store.

Entities are immutable pydantic models. Changing one goes through an
explicit operation (``with_changes``, ``add_tag``...) that returns a new
value together with a flag telling whether anything actually changed.
"""

import datetime
import re
from dataclasses import dataclass
from datetime import timezone
from typing import Any, FrozenSet, Generic, Iterable, List, Optional, TypeVar, Union

from pydantic import BaseModel, Field, field_validator, model_validator

# Default tag color in hex
DEFAULT_TAG_COLOR = "#607D8B"

HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")

MAX_TITLE_LENGTH = 255
MAX_TAG_NAME_LENGTH = 50


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(
    dt_value: Optional[datetime.datetime],
) -> Optional[datetime.datetime]:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    Database drivers hand back naive datetimes; those are stored in UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise
        unchanged. None stays None.
    """
    if dt_value is None:
        return None
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def to_storage_time(dt_value: datetime.datetime) -> datetime.datetime:
    """Convert an aware datetime to the naive UTC form written to the store."""
    return ensure_timezone_aware(dt_value).astimezone(timezone.utc).replace(tzinfo=None)


M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class Change(Generic[M]):
    """Result of a pure update on an entity.

    Attributes:
        entity: The new entity state (the original when nothing changed).
        changed: Whether any field actually changed.
    """

    entity: M
    changed: bool


def _apply_changes(model: M, fields: dict, touch: Optional[str]) -> Change[M]:
    """Revalidate ``model`` with ``fields`` applied.

    Stamps the ``touch`` timestamp field only when a value differs.
    """
    unknown = set(fields) - set(type(model).model_fields)
    if unknown:
        raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")
    if all(getattr(model, name) == value for name, value in fields.items()):
        return Change(entity=model, changed=False)
    data = {**dict(model), **fields}
    if touch and touch not in fields:
        data[touch] = utc_now()
    return Change(entity=type(model).model_validate(data), changed=True)


class User(BaseModel):
    """A user account. Only referenced by the store as an owner."""

    id: Optional[int] = Field(default=None, description="Store-assigned ID")
    username: str = Field(..., max_length=50, description="Unique login name")
    email: str = Field(..., max_length=100, description="Unique email address")
    password_hash: str = Field(..., description="Hashed password")
    full_name: Optional[str] = Field(default=None, max_length=100)
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("username", "email")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Value cannot be empty")
        return v

    def with_changes(self, **fields: Any) -> Change["User"]:
        """Return a copy with ``fields`` applied, touching ``updated_at``."""
        return _apply_changes(self, fields, touch="updated_at")


class Tag(BaseModel):
    """A user-defined tag for categorizing notes.

    Two tags are the same tag when they share ``(name, user_id)``; this
    mirrors the unique key in the store, so a set of tags can never hold
    two entries that would resolve to the same row.
    """

    id: Optional[int] = Field(default=None, description="Store-assigned ID")
    name: str = Field(..., description="Tag name")
    user_id: int = Field(..., description="Owning user")
    color: str = Field(default=DEFAULT_TAG_COLOR, description="Hex color #RRGGBB")
    created_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate that the name is not empty and fits the column."""
        v = v.strip()
        if not v:
            raise ValueError("Tag name cannot be empty")
        if len(v) > MAX_TAG_NAME_LENGTH:
            raise ValueError(f"Tag name cannot exceed {MAX_TAG_NAME_LENGTH} characters")
        return v

    @field_validator("color", mode="before")
    @classmethod
    def validate_color(cls, v: Optional[str]) -> str:
        if v is None:
            return DEFAULT_TAG_COLOR
        if not isinstance(v, str) or not HEX_COLOR_PATTERN.match(v):
            raise ValueError(f"Color must be a hex string like {DEFAULT_TAG_COLOR}")
        return v.upper()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tag):
            return NotImplemented
        return (self.name, self.user_id) == (other.name, other.user_id)

    def __hash__(self) -> int:
        return hash((self.name, self.user_id))

    def __str__(self) -> str:
        """Return string representation of tag."""
        return self.name

    def with_changes(self, **fields: Any) -> Change["Tag"]:
        """Return a copy with ``fields`` applied (tags carry no updated_at)."""
        return _apply_changes(self, fields, touch=None)


class Note(BaseModel):
    """A user-authored note with its set of tags."""

    id: Optional[int] = Field(default=None, description="Store-assigned ID")
    user_id: int = Field(..., description="Owning user")
    title: str = Field(..., description="Title of the note")
    content: Optional[str] = Field(default=None, description="Body text")
    is_pinned: bool = Field(default=False)
    is_archived: bool = Field(default=False)
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last updated (UTC)"
    )
    tags: FrozenSet[Tag] = Field(default_factory=frozenset)

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="before")
    @classmethod
    def coerce_tag_names(cls, data: Any) -> Any:
        """Accept plain tag names; they belong to the note's owner."""
        if isinstance(data, dict) and data.get("tags"):
            user_id = data.get("user_id")
            data = {
                **data,
                "tags": [
                    Tag(name=t, user_id=user_id) if isinstance(t, str) else t
                    for t in data["tags"]
                ],
            }
        return data

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        if len(v) > MAX_TITLE_LENGTH:
            raise ValueError(f"Title cannot exceed {MAX_TITLE_LENGTH} characters")
        return v

    @property
    def tag_names(self) -> List[str]:
        """Tag names in alphabetical order."""
        return sorted(tag.name for tag in self.tags)

    def with_changes(self, **fields: Any) -> Change["Note"]:
        """Return a copy with ``fields`` applied, touching ``updated_at``."""
        if "tags" in fields:
            fields["tags"] = frozenset(self._coerce_tags(fields["tags"]))
        return _apply_changes(self, fields, touch="updated_at")

    def with_tags(self, tags: Iterable[Union[str, Tag]]) -> Change["Note"]:
        """Replace the whole tag set."""
        return self.with_changes(tags=tags)

    def add_tag(self, tag: Union[str, Tag]) -> Change["Note"]:
        """Add a tag; unchanged when a tag with the same name is present."""
        return self.with_tags(self.tags | set(self._coerce_tags([tag])))

    def remove_tag(self, tag: Union[str, Tag]) -> Change["Note"]:
        """Remove a tag by name."""
        name = tag.name if isinstance(tag, Tag) else tag
        return self.with_tags(t for t in self.tags if t.name != name)

    def _coerce_tags(self, tags: Iterable[Union[str, Tag]]) -> List[Tag]:
        return [
            Tag(name=t, user_id=self.user_id) if isinstance(t, str) else t
            for t in tags
        ]
