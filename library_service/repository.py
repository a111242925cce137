from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Union

from .domain import (
    Book,
    Checkout,
    CreateBook,
    CreateCheckout,
    ReturnedCheckout,
    Role,
    UpdateReturned,
    User,
)


class BookRepository(ABC):
    @abstractmethod
    def create(self, event: CreateBook, owner_id: str) -> Book: ...

    @abstractmethod
    def find_all(self) -> List[Book]: ...

    @abstractmethod
    def find_by_id(self, book_id: str) -> Optional[Book]: ...


class UserRepository(ABC):
    @abstractmethod
    def create(self, name: str, email: str, role: Role = Role.USER) -> User: ...

    @abstractmethod
    def find_current_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    def find_all(self) -> List[User]: ...


class CheckoutRepository(ABC):
    @abstractmethod
    def create(self, event: CreateCheckout) -> None:
        """Check a book out. Fails if the book is missing or already out."""

    @abstractmethod
    def update_returned(self, event: UpdateReturned) -> None:
        """Move the book's active checkout into history."""

    @abstractmethod
    def find_unreturned_all(self) -> List[Checkout]:
        """All active checkouts, oldest first."""

    @abstractmethod
    def find_unreturned_by_user_id(self, user_id: str) -> List[Checkout]:
        """A borrower's active checkouts, oldest first."""

    @abstractmethod
    def find_history_by_book_id(
        self, book_id: str
    ) -> List[Union[Checkout, ReturnedCheckout]]:
        """The active checkout, if any, then returned ones, newest first."""


class AuthRepository(ABC):
    @abstractmethod
    def fetch_user_id_from_token(self, access_token: str) -> Optional[str]: ...

    @abstractmethod
    def create_token(self, user_id: str) -> str: ...

    @abstractmethod
    def delete_token(self, access_token: str) -> None: ...


class HealthCheckRepository(ABC):
    @abstractmethod
    def check_db(self) -> bool: ...
