from datetime import datetime, timezone
import uuid

from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    String,
    DateTime,
    Enum,
    ForeignKey,
    Text,
    UniqueConstraint,
)

Base = declarative_base()


def new_id():
    return str(uuid.uuid4())


def _now():
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    user_id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    role = Column(
        Enum("Admin", "User", name="role"),
        nullable=False,
        default="User",
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class Book(Base):
    __tablename__ = "books"

    book_id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=False)
    isbn = Column(String(20), nullable=False)
    description = Column(Text, nullable=False, default="")
    user_id = Column(String(36), ForeignKey("users.user_id"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class Checkout(Base):
    """
    Active loans. The unique book_id keeps a second loan of the same book
    from ever being stored, whatever the isolation level.
    """
    __tablename__ = "checkouts"
    __table_args__ = (UniqueConstraint("book_id", name="uq_checkouts_book_id"),)

    checkout_id = Column(String(36), primary_key=True)
    book_id = Column(String(36), ForeignKey("books.book_id"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.user_id"), nullable=False)
    checked_out_at = Column(DateTime(timezone=True), nullable=False)


class ReturnedCheckout(Base):
    """
    Append-only loan history. Rows are copied out of checkouts on return.
    """
    __tablename__ = "returned_checkouts"

    checkout_id = Column(String(36), primary_key=True)
    book_id = Column(String(36), ForeignKey("books.book_id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.user_id"), nullable=False)
    checked_out_at = Column(DateTime(timezone=True), nullable=False)
    returned_at = Column(DateTime(timezone=True), nullable=False)
