"""
Database Access

DESIGN DECISION: Every mutating ledger operation is exactly one unit of work.
There is no lock manager above the store - the store's transaction is the
only correctness mechanism - so this module is where atomicity lives.

SQLite specifics:
- pysqlite's own implicit BEGIN is disabled and we emit our own, so a write
  unit starts with BEGIN IMMEDIATE and takes the write lock up front. Two
  writers therefore serialize at the store instead of failing halfway.
- Read sessions start a plain deferred BEGIN and never block writers (WAL).
- Foreign keys are switched on so transaction rows cascade with envelopes.
- An in-memory database is one connection shared by every thread, so units
  and reads on it are serialized by a process-wide lock for their whole span.

Any SQLAlchemy failure inside a unit is rolled back and surfaces as
StorageFailure. Ledger errors raised by callers inside a unit also roll it
back and propagate unchanged.
"""

import threading
from contextlib import contextmanager, nullcontext
from typing import Iterator, Optional

import structlog
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool
from tenacity import retry, stop_after_attempt, wait_exponential

from envelope_ledger.config import DatabaseSettings, get_settings
from envelope_ledger.errors import StorageFailure
from envelope_ledger.services.storage.tables import Base

logger = structlog.get_logger(__name__)

_READONLY_OPTION = "ledger_readonly"


def _install_sqlite_hooks(engine: Engine, use_wal: bool) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Take over transaction control from pysqlite
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            if use_wal:
                cursor.execute("PRAGMA journal_mode=WAL")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(_READONLY_OPTION):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """
    Owns the SQLAlchemy engine and hands out units of work.

    Usage:
        database = Database()
        database.create_schema()
        with database.unit_of_work() as session:
            ...
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        url: Optional[str] = None,
    ):
        self._settings = settings or get_settings().database
        self._url = url or self._settings.url
        self._engine: Optional[Engine] = None
        self._read_engine: Optional[Engine] = None
        self._shared_connection_lock = threading.RLock() if self._is_memory else None
        self._connect_lock = threading.Lock()

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_sqlite(self) -> bool:
        return self._url.startswith("sqlite")

    @property
    def _is_memory(self) -> bool:
        return self.is_sqlite and (
            self._url in ("sqlite://", "sqlite:///:memory:") or ":memory:" in self._url
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> Engine:
        """
        Create the engine and verify the store answers.

        Retried with backoff: at process start the database file or
        server may briefly be unavailable.
        """
        with self._connect_lock:
            if self._engine is None:
                self._engine = self._create_engine()
        return self._engine

    def _create_engine(self) -> Engine:
        try:
            kwargs: dict = {"echo": self._settings.echo}
            if self.is_sqlite:
                kwargs["connect_args"] = {
                    "timeout": self._settings.busy_timeout_seconds,
                    "check_same_thread": False,
                }
                if self._is_memory:
                    # One shared connection, otherwise each thread sees its own empty DB
                    kwargs["poolclass"] = StaticPool
            engine = create_engine(self._url, **kwargs)
            if self.is_sqlite:
                _install_sqlite_hooks(engine, use_wal=not self._is_memory)
            with engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
        except SQLAlchemyError as e:
            raise StorageFailure(f"Failed to connect to database: {e}") from e

        self._read_engine = engine.execution_options(**{_READONLY_OPTION: True})
        logger.info("database_connected", url=engine.url.render_as_string(hide_password=True))
        return engine

    def create_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        engine = self.connect()
        try:
            with self._exclusive():
                Base.metadata.create_all(engine)
        except SQLAlchemyError as e:
            raise StorageFailure(f"Failed to create schema: {e}") from e
        logger.info("database_schema_ready")

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        """
        One atomic write unit.

        Commits when the block exits normally, rolls back on any exception.
        """
        engine = self.connect()
        with self._exclusive():
            session = Session(engine, expire_on_commit=False)
            try:
                with session.begin():
                    yield session
            except SQLAlchemyError as e:
                logger.error("unit_of_work_rolled_back", error=str(e))
                raise StorageFailure(f"Unit of work rolled back: {e}") from e
            finally:
                session.close()

    @contextmanager
    def read_session(self) -> Iterator[Session]:
        """A session for read-only queries. Never commits."""
        self.connect()
        with self._exclusive():
            session = Session(self._read_engine)
            try:
                yield session
            except SQLAlchemyError as e:
                raise StorageFailure(f"Read failed: {e}") from e
            finally:
                session.close()

    def _exclusive(self):
        """Hold the shared-connection lock, if this database has one."""
        if self._shared_connection_lock is None:
            return nullcontext()
        return self._shared_connection_lock

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._read_engine = None
