from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Role(Enum):
    ADMIN = "Admin"
    USER = "User"


@dataclass
class User:
    user_id: str
    name: str
    email: str
    role: Role = Role.USER

    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@dataclass
class BookOwner:
    owner_id: str
    name: str


@dataclass
class Book:
    book_id: str
    title: str
    author: str
    isbn: str
    description: str
    owner: BookOwner


@dataclass
class CreateBook:
    title: str
    author: str
    isbn: str
    description: str = ""


@dataclass
class CheckoutBook:
    book_id: str
    title: str
    author: str
    isbn: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.book_id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
        }


@dataclass
class Checkout:
    """An outstanding loan."""

    checkout_id: str
    book: CheckoutBook
    checked_out_by: str
    checked_out_at: datetime
    returned_at: Optional[datetime] = None

    @property
    def is_returned(self) -> bool:
        return self.returned_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.checkout_id,
            "checkedOutBy": self.checked_out_by,
            "checkedOutAt": self.checked_out_at.isoformat(),
            "returnedAt": self.returned_at.isoformat() if self.returned_at else None,
            "book": self.book.to_dict(),
        }


@dataclass
class ReturnedCheckout(Checkout):
    """A loan moved into history. Keeps the id of the checkout it came from."""

    def __post_init__(self) -> None:
        if self.returned_at is None:
            raise ValueError(f"returned checkout {self.checkout_id} has no return time")


@dataclass
class CreateCheckout:
    book_id: str
    checked_out_by: str
    checked_out_at: datetime


@dataclass
class UpdateReturned:
    checkout_id: str
    book_id: str
    returned_by: str
    returned_at: datetime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without their zone
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
