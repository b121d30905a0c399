from __future__ import annotations

from typing import Protocol

from redis.asyncio import Redis

from .logger import logger

_DELETE_IF_EQUALS_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class CacheStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(
        self, key: str, value: str, ex: int | None = None, nx: bool = False
    ) -> bool: ...

    async def mget(self, keys: list[str]) -> list[str | None]: ...

    async def delete(self, key: str) -> int: ...

    async def delete_if_equals(self, key: str, value: str) -> bool: ...

    async def sadd(self, key: str, *members: str) -> int: ...

    async def smembers(self, key: str) -> set[str]: ...


class RedisCacheStore:
    """``CacheStore`` backed by a Redis server through ``redis.asyncio``."""

    def __init__(self, client: Redis):
        self._client = client

    @classmethod
    def from_url(cls, redis_url: str) -> RedisCacheStore:
        logger.debug("Connecting cache store to Redis at '%s'", redis_url.split("@")[-1])
        return cls(Redis.from_url(redis_url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(
        self, key: str, value: str, ex: int | None = None, nx: bool = False
    ) -> bool:
        return bool(await self._client.set(key, value, ex=ex, nx=nx))

    async def mget(self, keys: list[str]) -> list[str | None]:
        if not keys:
            return []
        return await self._client.mget(keys)

    async def delete(self, key: str) -> int:
        return await self._client.delete(key)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        return bool(await self._client.eval(_DELETE_IF_EQUALS_SCRIPT, 1, key, value))

    async def sadd(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return await self._client.sadd(key, *members)

    async def smembers(self, key: str) -> set[str]:
        return set(await self._client.smembers(key))

    async def close(self) -> None:
        await self._client.aclose()
