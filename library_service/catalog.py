from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import insert, select

from .database import ConnectionPool
from .domain import Book, BookOwner, CreateBook, Role, User
from .errors import Conflict, StorageError, WriteFailed
from .models import Book as BookRow
from .models import User as UserRow
from .models import new_id
from .repository import BookRepository, HealthCheckRepository, UserRepository

logger = logging.getLogger(__name__)


def _to_user(row: UserRow) -> User:
    return User(
        user_id=row.user_id,
        name=row.name,
        email=row.email,
        role=Role(row.role),
    )


def _book_with_owner():
    return select(BookRow, UserRow.name).join(UserRow, BookRow.user_id == UserRow.user_id)


def _to_book(row: BookRow, owner_name: str) -> Book:
    return Book(
        book_id=row.book_id,
        title=row.title,
        author=row.author,
        isbn=row.isbn,
        description=row.description,
        owner=BookOwner(owner_id=row.user_id, name=owner_name),
    )


class BookRepositoryImpl(BookRepository):
    def __init__(self, db: ConnectionPool) -> None:
        self.db = db

    def create(self, event: CreateBook, owner_id: str) -> Book:
        with self.db.begin() as tx:
            owner = tx.fetch_optional(select(UserRow.name).where(UserRow.user_id == owner_id))
            if owner is None:
                raise Conflict(f"The owner ({owner_id}) doesn't exist")

            book_id = new_id()
            affected = tx.execute(
                insert(BookRow.__table__).values(
                    book_id=book_id,
                    title=event.title,
                    author=event.author,
                    isbn=event.isbn,
                    description=event.description,
                    user_id=owner_id,
                )
            )
            if affected < 1:
                raise WriteFailed("no book record has been created")
            tx.commit()

        logger.info("Registered book %s (%s)", book_id, event.title)
        return Book(
            book_id=book_id,
            title=event.title,
            author=event.author,
            isbn=event.isbn,
            description=event.description,
            owner=BookOwner(owner_id=owner_id, name=owner.name),
        )

    def find_all(self) -> List[Book]:
        with self.db.session() as session:
            rows = session.execute(_book_with_owner().order_by(BookRow.created_at)).all()
            return [_to_book(book, name) for book, name in rows]

    def find_by_id(self, book_id: str) -> Optional[Book]:
        with self.db.session() as session:
            row = session.execute(
                _book_with_owner().where(BookRow.book_id == book_id)
            ).one_or_none()
            if row is None:
                return None
            book, name = row
            return _to_book(book, name)


class UserRepositoryImpl(UserRepository):
    def __init__(self, db: ConnectionPool) -> None:
        self.db = db

    def create(self, name: str, email: str, role: Role = Role.USER) -> User:
        with self.db.begin() as tx:
            taken = tx.fetch_optional(select(UserRow.user_id).where(UserRow.email == email))
            if taken is not None:
                raise Conflict(f"A user with email {email} already exists")

            user_id = new_id()
            affected = tx.execute(
                insert(UserRow.__table__).values(
                    user_id=user_id, name=name, email=email, role=role.value
                )
            )
            if affected < 1:
                raise WriteFailed("no user record has been created")
            tx.commit()

        logger.info("Created user %s", user_id)
        return User(user_id=user_id, name=name, email=email, role=role)

    def find_current_user(self, user_id: str) -> Optional[User]:
        with self.db.session() as session:
            row = session.get(UserRow, user_id)
            return _to_user(row) if row is not None else None

    def find_all(self) -> List[User]:
        with self.db.session() as session:
            rows = session.execute(select(UserRow).order_by(UserRow.created_at)).scalars().all()
            return [_to_user(row) for row in rows]


class HealthCheckRepositoryImpl(HealthCheckRepository):
    def __init__(self, db: ConnectionPool) -> None:
        self.db = db

    def check_db(self) -> bool:
        try:
            self.db.ping()
        except StorageError:
            logger.warning("Database health check failed")
            return False
        return True
