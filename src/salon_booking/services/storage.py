"""Persisted key/value storage for session identity."""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from salon_booking.config import StorageSettings
from salon_booking.utils.errors import StorageError
from salon_booking.utils.logging import get_logger

logger = get_logger("storage")


class SessionStorage(ABC):
    """String key/value store that survives process restarts."""

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """Return the stored value or None."""

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Store a value."""

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove a key; missing keys are ignored."""

    async def multi_remove(self, keys: Iterable[str]) -> None:
        """Remove several keys."""
        for key in keys:
            await self.remove_item(key)

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryStorage(SessionStorage):
    """Process-local storage, used by default and in tests."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)


class RedisStorage(SessionStorage):
    """Storage backed by Redis, one string key per item."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        key_prefix: str = "salon:session:",
        client: Optional[redis.Redis] = None,
    ):
        """Initialize Redis storage.

        Args:
            url: Redis connection URL, used when no client is given.
            key_prefix: Prefix applied to every key.
            client: Optional pre-built Redis client.
        """
        self.key_prefix = key_prefix
        self._client = client or redis.from_url(url, decode_responses=True)

    def _get_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get_item(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(self._get_key(key))
        except RedisError as e:
            logger.error(f"Failed to read {key} from Redis: {e}")
            raise StorageError(f"Failed to read {key}", key=key) from e

    async def set_item(self, key: str, value: str) -> None:
        try:
            await self._client.set(self._get_key(key), value)
        except RedisError as e:
            logger.error(f"Failed to write {key} to Redis: {e}")
            raise StorageError(f"Failed to write {key}", key=key) from e

    async def remove_item(self, key: str) -> None:
        await self.multi_remove([key])

    async def multi_remove(self, keys: Iterable[str]) -> None:
        redis_keys = [self._get_key(key) for key in keys]
        if not redis_keys:
            return
        try:
            await self._client.delete(*redis_keys)
        except RedisError as e:
            logger.error(f"Failed to delete keys from Redis: {e}")
            raise StorageError("Failed to delete session keys") from e

    async def close(self) -> None:
        await self._client.aclose()


def create_storage(settings: StorageSettings) -> SessionStorage:
    """Build the storage backend selected in settings."""
    if settings.backend == "redis":
        logger.info("Using Redis session storage")
        return RedisStorage(url=settings.redis_url, key_prefix=settings.key_prefix)
    return InMemoryStorage()
