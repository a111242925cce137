from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, insert, select, text
from sqlalchemy.exc import IntegrityError, OperationalError

from helpers import T1, T2
from library_service.database import (
    SERIALIZABLE,
    SQLITE_SERIALIZABLE,
    ConnectionPool,
    is_conflict,
)
from library_service.errors import Conflict, StorageError, TransactionError
from library_service.models import Checkout, ReturnedCheckout, User, new_id


def _insert_user(user_id):
    return insert(User.__table__).values(
        user_id=user_id, name="Carol", email=f"{user_id}@example.com", role="User"
    )


def _user_ids(db):
    with db.session() as session:
        return session.execute(select(User.user_id)).scalars().all()


def test_changes_without_commit_are_rolled_back(db):
    user_id = new_id()
    with db.begin() as tx:
        assert tx.execute(_insert_user(user_id)) == 1

    assert _user_ids(db) == []


def test_committed_changes_persist(db):
    user_id = new_id()
    with db.begin() as tx:
        tx.execute(_insert_user(user_id))
        tx.commit()

    assert _user_ids(db) == [user_id]


def test_error_inside_transaction_rolls_back(db):
    user_id = new_id()
    with pytest.raises(RuntimeError):
        with db.begin() as tx:
            tx.execute(_insert_user(user_id))
            raise RuntimeError("request cancelled")

    assert _user_ids(db) == []


def test_begin_fails_when_no_connection_can_be_made(tmp_path):
    missing = tmp_path / "missing" / "library.db"
    pool = ConnectionPool(create_engine(f"sqlite:///{missing}"))

    with pytest.raises(TransactionError) as excinfo:
        with pool.begin():
            pass

    assert excinfo.value.cause is not None


def test_statement_failure_is_storage_error(db):
    with pytest.raises(StorageError) as excinfo:
        with db.begin() as tx:
            tx.fetch_all(text("SELECT * FROM no_such_table"))

    assert excinfo.value.cause is not None


def test_second_active_row_for_a_book_is_a_conflict(db, book, alice):
    def insert_checkout():
        return insert(Checkout.__table__).values(
            checkout_id=new_id(),
            book_id=book.book_id,
            user_id=alice.user_id,
            checked_out_at=T1,
        )

    with db.begin() as tx:
        tx.execute(insert_checkout())
        tx.commit()

    with pytest.raises(Conflict):
        with db.begin() as tx:
            tx.execute(insert_checkout())
            tx.commit()


def test_ping(db, tmp_path):
    db.ping()

    broken = ConnectionPool(create_engine(f"sqlite:///{tmp_path / 'nope' / 'x.db'}"))
    with pytest.raises(StorageError):
        broken.ping()


def test_missing_foreign_key_is_storage_error(db, book):
    with pytest.raises(StorageError) as excinfo:
        with db.begin() as tx:
            tx.execute(
                insert(Checkout.__table__).values(
                    checkout_id=new_id(),
                    book_id=book.book_id,
                    user_id=new_id(),
                    checked_out_at=T1,
                )
            )

    assert not isinstance(excinfo.value, Conflict)


def test_duplicate_history_row_is_storage_error(db, book, alice):
    checkout_id = new_id()

    def archive():
        return insert(ReturnedCheckout.__table__).values(
            checkout_id=checkout_id,
            book_id=book.book_id,
            user_id=alice.user_id,
            checked_out_at=T1,
            returned_at=T2,
        )

    with db.begin() as tx:
        tx.execute(archive())
        tx.commit()

    with pytest.raises(StorageError) as excinfo:
        with db.begin() as tx:
            tx.execute(archive())

    assert not isinstance(excinfo.value, Conflict)


class SerializationFailure(Exception):
    pgcode = "40001"


class DeadlockDetected(Exception):
    pgcode = "40P01"


def test_serialization_failure_at_commit_is_a_conflict(db, monkeypatch):
    with pytest.raises(Conflict):
        with db.begin() as tx:
            tx.execute(_insert_user(new_id()))

            def fail_commit():
                raise OperationalError("COMMIT", {}, SerializationFailure())

            monkeypatch.setattr(tx._session, "commit", fail_commit)
            tx.commit()

    assert _user_ids(db) == []


def test_other_commit_failure_is_transaction_error(db, monkeypatch):
    with pytest.raises(TransactionError):
        with db.begin() as tx:
            def fail_commit():
                raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

            monkeypatch.setattr(tx._session, "commit", fail_commit)
            tx.commit()


@pytest.mark.parametrize(
    "error, expected",
    [
        (OperationalError("UPDATE", {}, SerializationFailure()), True),
        (OperationalError("UPDATE", {}, DeadlockDetected()), True),
        (OperationalError("BEGIN", {}, Exception("database is locked")), True),
        (
            IntegrityError(
                "INSERT",
                {},
                Exception('duplicate key value violates unique constraint "uq_checkouts_book_id"'),
            ),
            True,
        ),
        (
            IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: users.email")),
            True,
        ),
        (
            IntegrityError(
                "INSERT",
                {},
                Exception('insert or update violates foreign key constraint "checkouts_user_id_fkey"'),
            ),
            False,
        ),
        (
            IntegrityError(
                "INSERT", {}, Exception("UNIQUE constraint failed: returned_checkouts.checkout_id")
            ),
            False,
        ),
        (OperationalError("SELECT", {}, Exception("no such table: books")), False),
    ],
)
def test_is_conflict(error, expected):
    assert is_conflict(error) is expected


class RecordingSession:
    def __init__(self):
        self.execution_options = None

    def connection(self, execution_options=None):
        self.execution_options = execution_options

    def rollback(self):
        pass

    def close(self):
        pass


def test_server_databases_begin_serializable_transactions():
    engine = SimpleNamespace(dialect=SimpleNamespace(name="postgresql"))
    pool = ConnectionPool(engine)
    session = RecordingSession()
    pool.SessionLocal = lambda: session

    with pool.begin():
        pass

    assert session.execution_options == SERIALIZABLE


def test_sqlite_begins_immediate_transactions(db):
    assert db._serializable == SQLITE_SERIALIZABLE
