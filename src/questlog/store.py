"""Snapshot stores: opaque per-user get/set of snapshot JSON."""

from __future__ import annotations

from typing import Any, Optional, Protocol

from redis.asyncio import Redis

from .config import RedisSettings


class SnapshotStore(Protocol):
    """Persistence contract consumed by the engine."""

    async def load(self, user_id: str) -> Optional[str]: ...

    async def save(self, user_id: str, payload: str) -> None: ...

    async def delete(self, user_id: str) -> None: ...


class AsyncRedisProtocol(Protocol):
    """Subset of the redis.asyncio client used by the snapshot store."""

    async def get(self, name: str) -> Any: ...

    async def set(self, name: str, value: str) -> Any: ...

    async def delete(self, *names: str) -> Any: ...


class MemorySnapshotStore:
    """In-process store, used by tests and single-process embedding."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def load(self, user_id: str) -> Optional[str]:
        return self._data.get(user_id)

    async def save(self, user_id: str, payload: str) -> None:
        self._data[user_id] = payload

    async def delete(self, user_id: str) -> None:
        self._data.pop(user_id, None)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._data


class RedisSnapshotStore:
    """Persist one snapshot string per user under ``<prefix>:<user_id>``."""

    def __init__(
        self, redis: AsyncRedisProtocol, *, key_prefix: str = "questlog.snapshot"
    ) -> None:
        """Initialize snapshot store."""
        self._redis = redis
        self._prefix = key_prefix

    def key(self, user_id: str) -> str:
        return f"{self._prefix}:{user_id}"

    async def load(self, user_id: str) -> Optional[str]:
        """Return the stored snapshot for a user, if any."""
        value = await self._redis.get(self.key(user_id))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def save(self, user_id: str, payload: str) -> None:
        """Replace the stored snapshot for a user."""
        await self._redis.set(self.key(user_id), payload)

    async def delete(self, user_id: str) -> None:
        """Clear the stored snapshot for a user."""
        await self._redis.delete(self.key(user_id))


def create_redis_client(settings: RedisSettings) -> Redis:
    """Create an asyncio Redis client from settings."""
    return Redis.from_url(
        settings.url,
        decode_responses=settings.decode_responses,
        socket_timeout=settings.socket_timeout,
    )


def create_redis_store(settings: RedisSettings) -> RedisSnapshotStore:
    return RedisSnapshotStore(create_redis_client(settings), key_prefix=settings.key_prefix)
