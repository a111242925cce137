"""
Access tokens kept in Redis.

A token is a random key whose value is the user id it was issued to. Redis
drops the key once its TTL runs out, after which the token resolves to nothing.
"""
from __future__ import annotations

import logging
import uuid
from typing import Optional

import redis

from .domain import User
from .errors import StorageError
from .repository import AuthRepository, UserRepository

logger = logging.getLogger(__name__)


class RedisAuthRepository(AuthRepository):
    def __init__(self, kv, ttl: int) -> None:
        self.kv = kv
        self.ttl = ttl

    def _make_key(self, access_token: str) -> str:
        return f"library_auth:{access_token}"

    def fetch_user_id_from_token(self, access_token: str) -> Optional[str]:
        try:
            value = self.kv.get(self._make_key(access_token))
        except redis.RedisError as e:
            logger.error("Redis get failed: %s", e)
            raise StorageError("could not look up the access token", cause=e) from e
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else value

    def create_token(self, user_id: str) -> str:
        access_token = uuid.uuid4().hex
        try:
            self.kv.set(self._make_key(access_token), user_id, ex=self.ttl)
        except redis.RedisError as e:
            logger.error("Redis set failed: %s", e)
            raise StorageError("could not store the access token", cause=e) from e
        return access_token

    def delete_token(self, access_token: str) -> None:
        try:
            self.kv.delete(self._make_key(access_token))
        except redis.RedisError as e:
            logger.error("Redis delete failed: %s", e)
            raise StorageError("could not delete the access token", cause=e) from e


def connect_redis_with(config):
    return redis.from_url(
        config.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=1,
        socket_timeout=1,
    )


def resolve_user(
    auth_repository: AuthRepository, user_repository: UserRepository, access_token: str
) -> Optional[User]:
    """The user behind an access token, or None if the token is unknown or expired."""
    user_id = auth_repository.fetch_user_id_from_token(access_token)
    if user_id is None:
        return None
    return user_repository.find_current_user(user_id)
