import pytest
from sqlalchemy import create_engine

from library_service.catalog import BookRepositoryImpl, UserRepositoryImpl
from library_service.checkout import CheckoutRepositoryImpl
from library_service.database import ConnectionPool
from library_service.domain import CreateBook, Role


@pytest.fixture
def db(tmp_path, request):
    # A unique database file per test
    db_file = tmp_path / f"test_{request.node.name}.db"
    pool = ConnectionPool(create_engine(f"sqlite:///{db_file}"))
    pool.create_schema()
    yield pool
    pool.dispose()


@pytest.fixture
def user_repo(db):
    return UserRepositoryImpl(db)


@pytest.fixture
def book_repo(db):
    return BookRepositoryImpl(db)


@pytest.fixture
def checkout_repo(db):
    return CheckoutRepositoryImpl(db)


@pytest.fixture
def alice(user_repo):
    return user_repo.create("Alice Reader", "alice@example.com", Role.ADMIN)


@pytest.fixture
def bob(user_repo):
    return user_repo.create("Bob Reader", "bob@example.com")


@pytest.fixture
def book(book_repo, alice):
    return book_repo.create(
        CreateBook("Clean Code", "Robert C. Martin", "9780132350884", "Craftsmanship"),
        alice.user_id,
    )


@pytest.fixture
def other_book(book_repo, alice):
    return book_repo.create(
        CreateBook("Effective Java", "Joshua Bloch", "9780134685991"),
        alice.user_id,
    )
