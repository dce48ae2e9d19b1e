"""Explicit results returned by repository operations."""

from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

from note_store.exceptions import NoteStoreError

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either the value an operation produced, or the error it failed with.

    Repositories never raise for store problems; callers branch on
    ``ok`` (or truthiness) and read ``value`` or ``error``.

    Attributes:
        value: The produced value (None on failure, and for deletes).
        error: The typed failure, or None on success.
        operation: Name of the repository operation that produced it.
    """

    value: Optional[T] = None
    error: Optional[NoteStoreError] = None
    operation: Optional[str] = None

    @classmethod
    def success(cls, value: Optional[T] = None, operation: Optional[str] = None) -> "Outcome[T]":
        return cls(value=value, error=None, operation=operation)

    @classmethod
    def failure(cls, error: NoteStoreError, operation: Optional[str] = None) -> "Outcome[T]":
        return cls(value=None, error=error, operation=operation)

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.ok

    def unwrap(self) -> T:
        """Return the value, raising the carried error on failure."""
        if self.error is not None:
            raise self.error
        return self.value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result: Dict[str, Any] = {
            "status": "ok" if self.ok else "error",
            "operation": self.operation,
        }
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result
