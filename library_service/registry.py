from .auth import RedisAuthRepository, connect_redis_with
from .catalog import BookRepositoryImpl, HealthCheckRepositoryImpl, UserRepositoryImpl
from .checkout import CheckoutRepositoryImpl
from .database import connect_database_with


class AppRegistry:
    """
    Wires the repository implementations the app talks to. Tests build one
    directly with fakes in place of the real repositories.
    """

    def __init__(
        self,
        health_check_repository,
        book_repository,
        auth_repository,
        user_repository,
        checkout_repository,
        db=None,
    ):
        self.health_check_repository = health_check_repository
        self.book_repository = book_repository
        self.auth_repository = auth_repository
        self.user_repository = user_repository
        self.checkout_repository = checkout_repository
        self.db = db

    @classmethod
    def build(cls, db, kv, auth_ttl):
        return cls(
            health_check_repository=HealthCheckRepositoryImpl(db),
            book_repository=BookRepositoryImpl(db),
            auth_repository=RedisAuthRepository(kv, auth_ttl),
            user_repository=UserRepositoryImpl(db),
            checkout_repository=CheckoutRepositoryImpl(db),
            db=db,
        )

    @classmethod
    def from_config(cls, config):
        return cls.build(
            connect_database_with(config),
            connect_redis_with(config),
            config.AUTH_TOKEN_TTL,
        )
