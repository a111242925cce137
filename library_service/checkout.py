"""
Checkout and return of books.

Each book is either free or held by exactly one active row in ``checkouts``.
Both transitions run in a serializable transaction that re-reads the book and
its checkout before deciding anything, so two racing requests for the same
book cannot both pass their checks: the database aborts one of them and that
abort surfaces as ``Conflict``, the same as a failed precondition.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Union

from sqlalchemy import DateTime, delete, insert, literal, select

from .database import ConnectionPool
from .domain import (
    Checkout,
    CheckoutBook,
    CreateCheckout,
    ReturnedCheckout,
    UpdateReturned,
    as_utc,
)
from .errors import Conflict, EntityNotFound, WriteFailed
from .models import Book as BookRow
from .models import Checkout as CheckoutRow
from .models import ReturnedCheckout as ReturnedCheckoutRow
from .models import User as UserRow
from .models import new_id
from .repository import CheckoutRepository

logger = logging.getLogger(__name__)

_checkouts = CheckoutRow.__table__
_returned_checkouts = ReturnedCheckoutRow.__table__


def _checkout_state(book_id):
    # the book, plus its active checkout columns (NULL when it is free)
    return (
        select(BookRow.book_id, CheckoutRow.checkout_id, CheckoutRow.user_id)
        .select_from(BookRow)
        .outerjoin(CheckoutRow, BookRow.book_id == CheckoutRow.book_id)
        .where(BookRow.book_id == book_id)
    )


def _active_checkouts():
    return (
        select(
            CheckoutRow.checkout_id,
            CheckoutRow.book_id,
            CheckoutRow.user_id,
            CheckoutRow.checked_out_at,
            BookRow.title,
            BookRow.author,
            BookRow.isbn,
        )
        .select_from(CheckoutRow)
        .join(BookRow, CheckoutRow.book_id == BookRow.book_id)
    )


def _to_checkout(row) -> Checkout:
    return Checkout(
        checkout_id=row.checkout_id,
        book=CheckoutBook(
            book_id=row.book_id,
            title=row.title,
            author=row.author,
            isbn=row.isbn,
        ),
        checked_out_by=row.user_id,
        checked_out_at=as_utc(row.checked_out_at),
    )


def _to_returned_checkout(row) -> ReturnedCheckout:
    return ReturnedCheckout(
        checkout_id=row.checkout_id,
        book=CheckoutBook(
            book_id=row.book_id,
            title=row.title,
            author=row.author,
            isbn=row.isbn,
        ),
        checked_out_by=row.user_id,
        checked_out_at=as_utc(row.checked_out_at),
        returned_at=as_utc(row.returned_at),
    )


class CheckoutRepositoryImpl(CheckoutRepository):
    def __init__(self, db: ConnectionPool) -> None:
        self.db = db

    def create(self, event: CreateCheckout) -> None:
        with self.db.begin() as tx:
            state = tx.fetch_optional(_checkout_state(event.book_id))
            if state is None:
                raise EntityNotFound(f"The book ({event.book_id}) doesn't exist")
            if state.checkout_id is not None:
                logger.warning(
                    "Rejected checkout of book %s by %s: already checked out",
                    event.book_id,
                    event.checked_out_by,
                )
                raise Conflict(f"The book ({event.book_id}) was already borrowed")

            borrower = tx.fetch_optional(
                select(UserRow.user_id).where(UserRow.user_id == event.checked_out_by)
            )
            if borrower is None:
                raise EntityNotFound(f"The user ({event.checked_out_by}) doesn't exist")

            checkout_id = new_id()
            affected = tx.execute(
                insert(_checkouts).values(
                    checkout_id=checkout_id,
                    book_id=event.book_id,
                    user_id=event.checked_out_by,
                    checked_out_at=event.checked_out_at,
                )
            )
            if affected < 1:
                raise WriteFailed("no checkout record has been created")

            tx.commit()

        logger.info(
            "Checked out book %s to %s (checkout %s)",
            event.book_id,
            event.checked_out_by,
            checkout_id,
        )

    def update_returned(self, event: UpdateReturned) -> None:
        with self.db.begin() as tx:
            state = tx.fetch_optional(_checkout_state(event.book_id))
            if state is None:
                raise EntityNotFound(f"The book ({event.book_id}) doesn't exist")
            if state.checkout_id is None:
                raise Conflict(f"The book ({event.book_id}) is not checked out")
            if (state.checkout_id, state.user_id) != (event.checkout_id, event.returned_by):
                logger.warning(
                    "Rejected return of book %s by %s for checkout %s",
                    event.book_id,
                    event.returned_by,
                    event.checkout_id,
                )
                raise Conflict(
                    f"The user ({event.returned_by}) can not return the book "
                    f"({event.book_id}) of the checkout ({event.checkout_id})"
                )

            self._archive_checkout(tx, event)
            self._delete_checkout(tx, event.checkout_id)
            tx.commit()

        logger.info(
            "Returned book %s by %s (checkout %s)",
            event.book_id,
            event.returned_by,
            event.checkout_id,
        )

    def _archive_checkout(self, tx, event: UpdateReturned) -> None:
        copied = select(
            CheckoutRow.checkout_id,
            CheckoutRow.book_id,
            CheckoutRow.user_id,
            CheckoutRow.checked_out_at,
            literal(event.returned_at, DateTime(timezone=True)),
        ).where(CheckoutRow.checkout_id == event.checkout_id)

        affected = tx.execute(
            insert(_returned_checkouts).from_select(
                ["checkout_id", "book_id", "user_id", "checked_out_at", "returned_at"],
                copied,
            )
        )
        if affected < 1:
            raise WriteFailed("no returned checkout record has been created")

    def _delete_checkout(self, tx, checkout_id: str) -> None:
        affected = tx.execute(
            delete(_checkouts).where(_checkouts.c.checkout_id == checkout_id)
        )
        if affected < 1:
            raise WriteFailed("no checkout record has been deleted")

    def find_unreturned_all(self) -> List[Checkout]:
        with self.db.session() as session:
            rows = session.execute(
                _active_checkouts().order_by(CheckoutRow.checked_out_at)
            ).all()
        return [_to_checkout(row) for row in rows]

    def find_unreturned_by_user_id(self, user_id: str) -> List[Checkout]:
        with self.db.session() as session:
            rows = session.execute(
                _active_checkouts()
                .where(CheckoutRow.user_id == user_id)
                .order_by(CheckoutRow.checked_out_at)
            ).all()
        return [_to_checkout(row) for row in rows]

    def find_history_by_book_id(
        self, book_id: str
    ) -> List[Union[Checkout, ReturnedCheckout]]:
        with self.db.session() as session:
            active = self._find_unreturned_by_book_id(session, book_id)
            rows = session.execute(
                select(
                    ReturnedCheckoutRow.checkout_id,
                    ReturnedCheckoutRow.book_id,
                    ReturnedCheckoutRow.user_id,
                    ReturnedCheckoutRow.checked_out_at,
                    ReturnedCheckoutRow.returned_at,
                    BookRow.title,
                    BookRow.author,
                    BookRow.isbn,
                )
                .select_from(ReturnedCheckoutRow)
                .join(BookRow, ReturnedCheckoutRow.book_id == BookRow.book_id)
                .where(ReturnedCheckoutRow.book_id == book_id)
                .order_by(ReturnedCheckoutRow.checked_out_at.desc())
            ).all()

        history: List[Union[Checkout, ReturnedCheckout]] = [
            _to_returned_checkout(row) for row in rows
        ]
        if active is not None:
            history.insert(0, active)
        return history

    def _find_unreturned_by_book_id(self, session, book_id: str) -> Optional[Checkout]:
        row = session.execute(
            _active_checkouts().where(CheckoutRow.book_id == book_id)
        ).one_or_none()
        return _to_checkout(row) if row is not None else None
