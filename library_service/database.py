"""
Connection pool and transaction handles over SQLAlchemy.

Repositories never touch the engine directly: they open a ``Transaction`` with
``ConnectionPool.begin()`` for anything that writes, or a plain session with
``ConnectionPool.session()`` for read-only queries.
"""
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .errors import Conflict, StorageError, TransactionError
from .models import Base

logger = logging.getLogger(__name__)

SERIALIZABLE = {"isolation_level": "SERIALIZABLE"}
# SQLite has a single writer; taking the write lock at BEGIN serializes writers.
SQLITE_SERIALIZABLE = {"sqlite_begin": "BEGIN IMMEDIATE"}

# serialization_failure, deadlock_detected
_CONFLICT_SQLSTATES = ("40001", "40P01")

# Unique keys a racing writer can trip over. SQLite reports the column,
# PostgreSQL the constraint name.
_CONFLICT_KEYS = (
    "checkouts.book_id",
    "uq_checkouts_book_id",
    "users.email",
    "uq_users_email",
)


def is_conflict(exc):
    """
    True when the database refused the statement because a concurrent
    transaction got there first. Other integrity violations (foreign keys,
    duplicate primary keys) are not conflicts.
    """
    orig = getattr(exc, "orig", None)
    if isinstance(exc, IntegrityError):
        message = str(orig)
        return any(key in message for key in _CONFLICT_KEYS)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _CONFLICT_SQLSTATES:
        return True
    return "database is locked" in str(orig)


class Transaction:
    """
    One serializable transaction. Nothing is kept unless ``commit()`` is
    called before the ``with`` block ends.
    """

    def __init__(self, session):
        self._session = session
        self._finished = False

    def fetch_optional(self, statement):
        return self._run(statement).one_or_none()

    def fetch_all(self, statement):
        return self._run(statement).all()

    def execute(self, statement):
        """Run a write and return the number of rows it affected."""
        return self._run(statement).rowcount

    def commit(self):
        try:
            self._session.commit()
        except DBAPIError as e:
            if is_conflict(e):
                raise Conflict("the transaction conflicted with a concurrent one") from e
            logger.error("Commit failed: %s", e)
            raise TransactionError("could not commit the transaction", cause=e) from e
        finally:
            self._finished = True

    def rollback(self):
        if not self._finished:
            self._session.rollback()
            self._finished = True

    def _run(self, statement):
        try:
            return self._session.execute(statement)
        except DBAPIError as e:
            if is_conflict(e):
                raise Conflict("the statement conflicted with a concurrent transaction") from e
            logger.error("Statement failed: %s", e)
            raise StorageError(str(e.orig), cause=e) from e


class ConnectionPool:
    def __init__(self, engine):
        self.engine = engine
        self.SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

        if engine.dialect.name == "sqlite":
            _use_explicit_sqlite_transactions(engine)
            self._serializable = SQLITE_SERIALIZABLE
        else:
            self._serializable = SERIALIZABLE

    def create_schema(self):
        Base.metadata.create_all(self.engine)

    @contextmanager
    def begin(self):
        session = self.SessionLocal()
        try:
            # procuring the connection is what starts the transaction
            session.connection(execution_options=self._serializable)
        except SQLAlchemyError as e:
            session.close()
            if isinstance(e, DBAPIError) and is_conflict(e):
                raise Conflict("the database is busy with a concurrent transaction") from e
            logger.error("Could not begin a transaction: %s", e)
            raise TransactionError("could not begin a transaction", cause=e) from e

        tx = Transaction(session)
        try:
            yield tx
        finally:
            tx.rollback()
            session.close()

    @contextmanager
    def session(self):
        session = self.SessionLocal()
        try:
            yield session
        except DBAPIError as e:
            logger.error("Query failed: %s", e)
            raise StorageError(str(e.orig), cause=e) from e
        finally:
            session.close()

    def ping(self):
        with self.session() as session:
            session.execute(text("SELECT 1"))

    def dispose(self):
        self.engine.dispose()


def _use_explicit_sqlite_transactions(engine):
    """
    pysqlite opens transactions lazily on its own; hand BEGIN over to
    SQLAlchemy so the transaction mode can be chosen per connection.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(conn.get_execution_options().get("sqlite_begin", "BEGIN"))


def connect_database_with(config):
    url = config.DATABASE_URL
    kwargs = {"echo": config.SQLALCHEMY_ECHO}
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = config.DATABASE_POOL_SIZE
        kwargs["pool_pre_ping"] = True
    return ConnectionPool(create_engine(url, **kwargs))
