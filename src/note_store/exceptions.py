"""Custom exceptions for the note store.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Repositories never let these escape:
they are carried to callers inside an Outcome.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Lookup errors (1xxx)
    NOT_FOUND = 1000
    NOTE_NOT_FOUND = 1001
    TAG_NOT_FOUND = 1002

    # Integrity errors (2xxx)
    CONSTRAINT_VIOLATION = 2001
    DUPLICATE_TAG = 2002
    FOREIGN_KEY_VIOLATION = 2003

    # Connection errors (3xxx)
    CONNECTION_UNAVAILABLE = 3001
    POOL_EXHAUSTED = 3002
    PROVIDER_NOT_STARTED = 3003

    # Storage errors (4xxx)
    TRANSACTION_FAILED = 4001
    STORAGE_READ_FAILED = 4002
    DECODE_FAILED = 4003
    SCHEMA_INIT_FAILED = 4004

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001


class NoteStoreError(Exception):
    """Base exception for all note store errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class ConnectionUnavailableError(NoteStoreError):
    """Raised when no connection can be obtained from the pool.

    Covers pool exhaustion past the acquire timeout, an unreachable
    store, and use of a provider that was never started (or was stopped).
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONNECTION_UNAVAILABLE,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=code, details=details)
        self.original_error = original_error


class ConstraintViolationError(NoteStoreError):
    """Raised when a write violates a unique or foreign key constraint."""

    def __init__(
        self,
        message: str,
        constraint: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONSTRAINT_VIOLATION,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if constraint:
            details["constraint"] = constraint
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=code, details=details)
        self.constraint = constraint
        self.original_error = original_error


class NotFoundError(NoteStoreError):
    """Raised when an id/owner pair matches no row."""

    def __init__(
        self,
        message: str,
        entity: str = "entity",
        entity_id: Optional[Any] = None,
        user_id: Optional[int] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        details: Dict[str, Any] = {"entity": entity}
        if entity_id is not None:
            details["id"] = entity_id
        if user_id is not None:
            details["user_id"] = user_id
        super().__init__(message, code=code, details=details)
        self.entity = entity
        self.entity_id = entity_id
        self.user_id = user_id


class NoteNotFoundError(NotFoundError):
    """Raised when a note cannot be found."""

    def __init__(
        self,
        note_id: Optional[int],
        user_id: Optional[int] = None,
        message: Optional[str] = None
    ):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            entity="note",
            entity_id=note_id,
            user_id=user_id,
            code=ErrorCode.NOTE_NOT_FOUND
        )
        self.note_id = note_id


class TagNotFoundError(NotFoundError):
    """Raised when a tag cannot be found for the given owner."""

    def __init__(
        self,
        tag_id: Optional[int] = None,
        user_id: Optional[int] = None,
        name: Optional[str] = None,
        message: Optional[str] = None
    ):
        if message is None:
            if tag_id is not None:
                message = f"Tag with ID '{tag_id}' not found"
            else:
                message = f"Tag '{name}' not found"
        super().__init__(
            message,
            entity="tag",
            entity_id=tag_id,
            user_id=user_id,
            code=ErrorCode.TAG_NOT_FOUND
        )
        self.tag_id = tag_id
        self.name = name
        if name is not None:
            self.details["name"] = name


class TransactionFailureError(NoteStoreError):
    """Raised when a multi-statement write had to be rolled back."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.TRANSACTION_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class StorageError(NoteStoreError):
    """Raised for unexpected store errors outside a unit of work."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class DecodeError(NoteStoreError):
    """Raised when a database row cannot be decoded into an entity."""

    def __init__(
        self,
        message: str,
        entity: str,
        row_id: Optional[Any] = None,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {"entity": entity}
        if row_id is not None:
            details["row_id"] = row_id
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=ErrorCode.DECODE_FAILED, details=details)
        self.entity = entity
        self.row_id = row_id
        self.original_error = original_error


class SchemaInitializationError(NoteStoreError):
    """Raised when the schema cannot be created.

    This is fatal: the store cannot be used without its tables.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=ErrorCode.SCHEMA_INIT_FAILED, details=details)
        self.original_error = original_error


class ConfigurationError(NoteStoreError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key


class ValidationError(NoteStoreError):
    """Raised for invalid caller input."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value
