import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from .cache import CacheStore
from .logger import logger


class CacheLock:
    """Time-bound exclusive lock stored in the cache with set-if-absent.

    The lock expires on its own after ``ttl_seconds`` so an abandoned holder
    never blocks a source forever. Release only deletes the key while it still
    holds this instance's token.
    """

    def __init__(
        self,
        cache: CacheStore,
        key: str,
        ttl_seconds: int,
        wait_seconds: float = 0.0,
        poll_interval: float = 0.05,
    ):
        self.cache = cache
        self.key = key
        self.ttl_seconds = ttl_seconds
        self.wait_seconds = wait_seconds
        self.poll_interval = poll_interval
        self._token = uuid.uuid4().hex

    async def acquire(self) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_seconds
        while True:
            if await self.cache.set(self.key, self._token, ex=self.ttl_seconds, nx=True):
                logger.debug("Acquired lock '%s'", self.key)
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)

    async def release(self) -> None:
        if await self.cache.delete_if_equals(self.key, self._token):
            logger.debug("Released lock '%s'", self.key)
        else:
            logger.warning("Lock '%s' expired or was taken over before release", self.key)

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[bool]:
        acquired = await self.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                await self.release()
