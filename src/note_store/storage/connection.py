"""Bounded connection pool with scoped acquisition.

The ConnectionProvider is an explicit store handle: it is constructed and
started once at process start and passed to every repository. Each
repository call borrows one session for its whole duration, and writes
borrow a unit of work that commits or rolls back as one.
"""
import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from note_store.config import DatabaseConfig, resolve_database_config
from note_store.exceptions import (
    ConnectionUnavailableError,
    ErrorCode,
    NoteStoreError,
)
from note_store.storage.base import translate_store_error
from note_store.utils import redact_url

logger = logging.getLogger(__name__)

# ConnectionRecord.info key holding the monotonic time of the last checkin
_LAST_CHECKIN = "note_store_last_checkin"


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def _configure_sqlite(engine: Engine, in_memory: bool) -> None:
    """Apply SQLite settings needed for correct transactional behaviour.

    - Foreign keys are off by default in SQLite; the schema relies on
      ON DELETE CASCADE.
    - pysqlite's implicit BEGIN handling breaks SAVEPOINT, so the driver is
      put in autocommit mode and SQLAlchemy emits BEGIN itself. IMMEDIATE
      takes the write lock up front, which serializes writers instead of
      failing them on lock upgrade.
    - SQLite's built-in lower() only folds ASCII; it is replaced by
      Python's str.lower so case-insensitive search matches any script.
    """
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _install_pool_guards(engine: Engine, config: DatabaseConfig) -> None:
    """Enforce the idle timeout and liveness probe at checkout.

    Raising DisconnectionError from a checkout handler makes the pool
    discard that connection and retry with a fresh one.
    """
    @event.listens_for(engine, "checkin")
    def record_checkin(dbapi_connection, connection_record):
        connection_record.info[_LAST_CHECKIN] = time.monotonic()

    @event.listens_for(engine, "checkout")
    def validate_checkout(dbapi_connection, connection_record, connection_proxy):
        last_checkin = connection_record.info.pop(_LAST_CHECKIN, None)
        if last_checkin is not None and time.monotonic() - last_checkin > config.idle_timeout:
            logger.debug("Discarding connection idle past %ss", config.idle_timeout)
            raise DisconnectionError("Connection exceeded idle timeout")

        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(config.liveness_query)
            cursor.fetchall()
        except Exception as e:
            raise DisconnectionError(f"Liveness probe failed: {e}") from e
        finally:
            cursor.close()


class ConnectionProvider:
    """Owns the connection pool and hands out sessions.

    Lifecycle is ``start()`` then ``stop()``; both are safe to repeat.
    Can also be used as a context manager::

        with ConnectionProvider(config) as provider:
            notes = NoteRepository(provider)
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        """Initialize the provider without connecting.

        Args:
            config: Database settings. When None, ``start()`` resolves them
                from properties (or takes them as its own argument).
        """
        self._config = config
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._lock = threading.Lock()

    @property
    def config(self) -> Optional[DatabaseConfig]:
        return self._config

    @property
    def engine(self) -> Engine:
        """The live engine.

        Raises:
            ConnectionUnavailableError: If the provider is not started.
        """
        if self._engine is None:
            raise ConnectionUnavailableError(
                "Connection pool is not initialized",
                code=ErrorCode.PROVIDER_NOT_STARTED,
            )
        return self._engine

    @property
    def is_started(self) -> bool:
        return self._engine is not None

    def start(self, config: Optional[DatabaseConfig] = None) -> "ConnectionProvider":
        """Create the pool and open the minimum idle connections.

        Args:
            config: Settings to use, overriding the constructor value.

        Returns:
            self, for chaining.

        Raises:
            ConnectionUnavailableError: If the store cannot be reached.
        """
        with self._lock:
            if self._engine is not None:
                logger.debug("ConnectionProvider already started")
                return self

            cfg = config or self._config or resolve_database_config()
            engine = self._create_engine(cfg)
            try:
                self._warm_pool(engine, cfg.min_idle)
            except SQLAlchemyError as e:
                engine.dispose()
                raise ConnectionUnavailableError(
                    f"Cannot reach database at {redact_url(cfg.get_db_url())}",
                    original_error=e,
                ) from e

            self._config = cfg
            self._engine = engine
            self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

        logger.info(
            f"Database connection pool initialized: {redact_url(cfg.get_db_url())} "
            f"(max_size={cfg.max_pool_size}, min_idle={cfg.min_idle})"
        )
        return self

    def stop(self) -> None:
        """Release all pooled connections. A no-op when not started."""
        with self._lock:
            engine = self._engine
            self._engine = None
            self._session_factory = None
        if engine is None:
            return
        engine.dispose()
        logger.info("Database connection pool closed")

    def __enter__(self) -> "ConnectionProvider":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    @staticmethod
    def _create_engine(cfg: DatabaseConfig) -> Engine:
        url = cfg.get_db_url()
        if cfg.is_memory:
            # A private in-memory database exists per connection, so the
            # whole process has to share a single one.
            engine = create_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                echo=cfg.echo,
            )
        else:
            connect_args = {}
            if cfg.is_sqlite:
                connect_args = {"check_same_thread": False, "timeout": cfg.acquire_timeout}
            engine = create_engine(
                url,
                poolclass=QueuePool,
                pool_size=cfg.max_pool_size,
                max_overflow=0,
                pool_timeout=cfg.acquire_timeout,
                connect_args=connect_args,
                echo=cfg.echo,
            )
            _install_pool_guards(engine, cfg)

        if cfg.is_sqlite:
            _configure_sqlite(engine, in_memory=cfg.is_memory)
        return engine

    @staticmethod
    def _warm_pool(engine: Engine, min_idle: int) -> None:
        """Open ``min_idle`` connections (at least one, to fail fast).

        This happens once. Later the pool only opens connections when a
        checkout finds none usable.
        """
        opened = []
        try:
            for _ in range(max(min_idle, 1)):
                opened.append(engine.connect())
        finally:
            for conn in opened:
                conn.close()

    def acquire(self) -> Session:
        """Borrow a session bound to one pooled connection.

        The connection is checked out immediately so pool exhaustion is
        reported here rather than at the first statement.

        Raises:
            ConnectionUnavailableError: If the provider is not started, the
                pool stays exhausted past the acquire timeout, or the store
                is unreachable.
        """
        factory = self._session_factory
        if factory is None:
            raise ConnectionUnavailableError(
                "Connection pool is not initialized",
                code=ErrorCode.PROVIDER_NOT_STARTED,
            )
        session = factory()
        try:
            session.connection()
        except PoolTimeoutError as e:
            session.close()
            raise ConnectionUnavailableError(
                f"No connection available within {self._config.acquire_timeout}s",
                code=ErrorCode.POOL_EXHAUSTED,
                original_error=e,
            ) from e
        except SQLAlchemyError as e:
            session.close()
            raise ConnectionUnavailableError(
                "Database unreachable", original_error=e
            ) from e
        return session

    def release(self, session: Session) -> None:
        """Return a borrowed session's connection to the pool."""
        session.close()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Scoped acquisition: the session is released on every exit path."""
        session = self.acquire()
        try:
            yield session
        finally:
            self.release(session)

    @contextmanager
    def unit_of_work(self, operation: str = "unit_of_work") -> Iterator[Session]:
        """Borrow a session whose statements commit or roll back together.

        Commits when the block exits normally. Any exception rolls the
        whole unit back; store errors are re-raised as typed errors
        (ConstraintViolationError, ConnectionUnavailableError or
        TransactionFailureError), typed errors raised by the block (such as
        a NotFoundError for a zero-row write) propagate unchanged.

        Args:
            operation: Name used in logs and error details.
        """
        session = self.acquire()
        try:
            yield session
            session.commit()
        except BaseException as e:
            session.rollback()
            logger.debug(f"Rolled back {operation}: {e}")
            if isinstance(e, SQLAlchemyError):
                raise translate_store_error(e, operation, in_transaction=True) from e
            raise
        finally:
            self.release(session)

    def ping(self) -> bool:
        """Run the liveness query on a fresh checkout."""
        try:
            with self.session() as session:
                session.execute(text(self._config.liveness_query))
            return True
        except (NoteStoreError, SQLAlchemyError) as e:
            logger.warning(f"Database ping failed: {e}")
            return False
