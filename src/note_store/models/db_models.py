"""SQLAlchemy database models for the note store.

Mirrors the five relational tables: users, notes, tags, the note_tags
junction table, and reminders (schema only, never read or written).
"""
from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Integer, String,
                        Table, Text, UniqueConstraint, false, func)
from sqlalchemy.orm import declarative_base

from note_store.models.schema import DEFAULT_TAG_COLOR

# Create base class for SQLAlchemy models
Base = declarative_base()

# Association table for tags and notes
note_tags = Table(
    "note_tags",
    Base.metadata,
    Column(
        "note_id", Integer, ForeignKey("notes.id", ondelete="CASCADE"), primary_key=True
    ),
    Column(
        "tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True
    ),
)


class DBUser(Base):
    """Database model for a user."""
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(100), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(100), nullable=True)
    created_at = Column(DateTime, server_default=func.current_timestamp())
    updated_at = Column(
        DateTime,
        server_default=func.current_timestamp(),
        onupdate=func.current_timestamp(),
    )

    def __repr__(self) -> str:
        """Return string representation of user."""
        return f"<User(id={self.id}, username='{self.username}')>"


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=True)
    is_pinned = Column(Boolean, default=False, server_default=false())
    is_archived = Column(Boolean, default=False, server_default=false())
    created_at = Column(DateTime, server_default=func.current_timestamp())
    updated_at = Column(DateTime, server_default=func.current_timestamp())

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id={self.id}, title='{self.title}')>"


class DBTag(Base):
    """Database model for a tag."""
    __tablename__ = "tags"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    color = Column(String(7), default=DEFAULT_TAG_COLOR, server_default=DEFAULT_TAG_COLOR)
    created_at = Column(DateTime, server_default=func.current_timestamp())

    # One tag name per user
    __table_args__ = (
        UniqueConstraint("name", "user_id", name="unique_tag_per_user"),
    )

    def __repr__(self) -> str:
        """Return string representation of tag."""
        return f"<Tag(id={self.id}, name='{self.name}', user_id={self.user_id})>"


class DBReminder(Base):
    """Database model for a reminder (schema only)."""
    __tablename__ = "reminders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    note_id = Column(
        Integer, ForeignKey("notes.id", ondelete="CASCADE"), nullable=False
    )
    reminder_time = Column(DateTime, nullable=False)
    is_completed = Column(Boolean, default=False, server_default=false())
    created_at = Column(DateTime, server_default=func.current_timestamp())

    def __repr__(self) -> str:
        """Return string representation of reminder."""
        return f"<Reminder(id={self.id}, note_id={self.note_id})>"


# Tables the schema initializer guarantees, in creation order
TABLE_NAMES = ("users", "notes", "tags", "note_tags", "reminders")
