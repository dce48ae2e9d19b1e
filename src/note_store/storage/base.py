"""Shared plumbing for repositories.

Repository methods are written as ordinary code that raises typed errors.
``repository_operation`` is the boundary that times each call, converts
whatever it raised into the error taxonomy, and hands the caller an
``Outcome`` instead of an exception.
"""
import functools
import logging
from typing import TYPE_CHECKING, Any, Callable, Optional, TypeVar

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import (DBAPIError, DisconnectionError, IntegrityError,
                            InterfaceError, SQLAlchemyError)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from note_store.exceptions import (
    ConnectionUnavailableError,
    ConstraintViolationError,
    ErrorCode,
    NoteStoreError,
    NotFoundError,
    StorageError,
    TransactionFailureError,
    ValidationError,
)
from note_store.models.results import Outcome
from note_store.observability import timed_operation

if TYPE_CHECKING:
    from note_store.storage.connection import ConnectionProvider

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Keyword arguments worth echoing into the timing log
_CONTEXT_KEYS = ("note_id", "tag_id", "user_id", "name")


def _constraint_hint(exc: IntegrityError) -> Optional[str]:
    message = str(exc.orig).lower()
    if "unique_tag_per_user" in message or "tags.name" in message:
        return "unique_tag_per_user"
    if "foreign key" in message:
        return "foreign_key"
    if "unique" in message or "duplicate" in message:
        return "unique"
    return None


def translate_store_error(
    exc: SQLAlchemyError, operation: str, in_transaction: bool = False
) -> NoteStoreError:
    """Map a SQLAlchemy error onto the note store error taxonomy.

    Args:
        exc: The error raised by SQLAlchemy or the DBAPI driver.
        operation: Name of the operation that failed.
        in_transaction: Whether the failure happened inside a unit of
            work that has been rolled back.

    Returns:
        The typed error to report (the caller chains ``exc`` as its cause).
    """
    if isinstance(exc, PoolTimeoutError):
        return ConnectionUnavailableError(
            "Connection pool exhausted",
            code=ErrorCode.POOL_EXHAUSTED,
            original_error=exc,
        )
    if isinstance(exc, IntegrityError):
        hint = _constraint_hint(exc)
        code = {
            "unique_tag_per_user": ErrorCode.DUPLICATE_TAG,
            "foreign_key": ErrorCode.FOREIGN_KEY_VIOLATION,
        }.get(hint, ErrorCode.CONSTRAINT_VIOLATION)
        return ConstraintViolationError(
            f"Constraint violated during {operation}",
            constraint=hint,
            code=code,
            original_error=exc,
        )
    if isinstance(exc, (DisconnectionError, InterfaceError)) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        return ConnectionUnavailableError(
            "Database connection lost", original_error=exc
        )
    if in_transaction:
        return TransactionFailureError(
            f"Transaction rolled back during {operation}",
            operation=operation,
            original_error=exc,
        )
    return StorageError(
        f"Database error during {operation}",
        operation=operation,
        original_error=exc,
    )


def repository_operation(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorator turning a repository method into an Outcome-returning call.

    The wrapped method returns its value normally or raises. Typed errors,
    SQLAlchemy errors and pydantic validation errors become
    ``Outcome.failure``; any other exception is a bug and propagates.

    Args:
        operation_name: Name used for metrics and logs. Defaults to the
            function name.
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Outcome:
            context = {k: kwargs[k] for k in _CONTEXT_KEYS if k in kwargs}
            with timed_operation(op_name, **context) as op:
                try:
                    value = func(*args, **kwargs)
                except NoteStoreError as e:
                    error = e
                except SQLAlchemyError as e:
                    error = translate_store_error(e, op_name)
                    error.__cause__ = e
                except PydanticValidationError as e:
                    first = e.errors()[0]
                    error = ValidationError(
                        first["msg"],
                        field=".".join(str(part) for part in first.get("loc", ())) or None,
                        value=first.get("input"),
                    )
                    error.__cause__ = e
                else:
                    if isinstance(value, (list, dict)):
                        op["result_count"] = len(value)
                    return Outcome.success(value, operation=op_name)

                op["error"] = error
                if isinstance(error, NotFoundError):
                    logger.warning(f"{op_name} failed: {error}")
                else:
                    logger.error(f"{op_name} failed: {error}")
                return Outcome.failure(error, operation=op_name)

        return wrapper  # type: ignore
    return decorator


class Repository:
    """Base class for repositories that borrow connections from a provider."""

    def __init__(self, provider: "ConnectionProvider"):
        """Initialize the repository.

        Args:
            provider: Started (or soon to be started) ConnectionProvider
                shared by all repositories of the process.
        """
        self.provider = provider
