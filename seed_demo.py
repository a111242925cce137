# seed_demo.py
import logging

from library_service.config import Config
from library_service.domain import CreateBook, Role
from library_service.errors import Conflict
from library_service.registry import AppRegistry

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

USERS = [
    {"name": "Ava Admin", "email": "admin@example.com", "role": Role.ADMIN},
    {"name": "Alice Reader", "email": "alice@example.com", "role": Role.USER},
    {"name": "Bob Reader", "email": "bob@example.com", "role": Role.USER},
]

BOOKS = [
    {
        "isbn": "978-0132350884",
        "title": "Clean Code",
        "author": "Robert C. Martin",
        "description": "A handbook of agile software craftsmanship.",
    },
    {
        "isbn": "978-0201616224",
        "title": "The Pragmatic Programmer",
        "author": "Andrew Hunt, David Thomas",
        "description": "From journeyman to master.",
    },
    {
        "isbn": "978-0131103627",
        "title": "The C Programming Language",
        "author": "Brian W. Kernighan, Dennis M. Ritchie",
        "description": "",
    },
    {
        "isbn": "978-0134685991",
        "title": "Effective Java",
        "author": "Joshua Bloch",
        "description": "",
    },
]


def seed_users(registry):
    existing = {u.email: u for u in registry.user_repository.find_all()}
    users = []
    for u in USERS:
        if u["email"] in existing:
            users.append(existing[u["email"]])
            continue
        try:
            users.append(registry.user_repository.create(u["name"], u["email"], u["role"]))
        except Conflict as e:
            logger.warning("Skipping user %s: %s", u["email"], e)
    return users


def seed_books(registry, owner):
    known = {b.isbn for b in registry.book_repository.find_all()}
    for b in BOOKS:
        if b["isbn"] in known:
            continue
        registry.book_repository.create(CreateBook(**b), owner.user_id)


def main():
    registry = AppRegistry.from_config(Config)
    registry.db.create_schema()

    users = seed_users(registry)
    admin = next(u for u in users if u.is_admin())
    seed_books(registry, admin)

    print("\nAccess tokens (valid for %d seconds):" % Config.AUTH_TOKEN_TTL)
    for user in users:
        token = registry.auth_repository.create_token(user.user_id)
        print(f"  {user.email:<20} {token}")

    print("\nBooks:")
    for book in registry.book_repository.find_all():
        print(f"  {book.book_id}  {book.title}")


if __name__ == "__main__":
    main()
