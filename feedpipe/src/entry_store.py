import json
from collections.abc import Iterable

from pydantic import TypeAdapter, ValidationError

from .cache import CacheStore
from .constants import CacheKeys
from .errors import StoreCorruptedError
from .locks import CacheLock
from .logger import logger
from .models import SitemapEntry, sort_entries
from .results import ErrorKind, Result
from .source_keys import SourceKeys

_ENTRIES_ADAPTER: TypeAdapter = TypeAdapter(list[SitemapEntry])


def merge_entries(
    existing: Iterable[SitemapEntry], new_entries: Iterable[SitemapEntry]
) -> list[SitemapEntry]:
    """Union by URL, newest first. An entry already stored always wins over a new one."""
    merged: dict[str, SitemapEntry] = {}
    for entry in existing:
        merged.setdefault(entry.url, entry)
    for entry in new_entries:
        merged.setdefault(entry.url, entry)
    return sort_entries(merged.values())


class ProcessedEntryStore:
    """Durable per-source entry list: deduplicated by URL, sorted newest first.

    Only the merge engine writes through this class. Every write is a complete
    snapshot and ``merge_and_write`` performs it under a short per-source lock
    after re-reading the snapshot, so concurrent merges of one source cannot
    drop each other's entries.
    """

    def __init__(
        self,
        cache: CacheStore,
        write_lock_ttl: int = 30,
        write_lock_wait: float = 5.0,
    ):
        self.cache = cache
        self.write_lock_ttl = write_lock_ttl
        self.write_lock_wait = write_lock_wait

    async def read(self, keys: SourceKeys) -> list[SitemapEntry] | None:
        raw = await self.cache.get(keys.processed_key)
        if raw is None:
            return None
        try:
            return _ENTRIES_ADAPTER.validate_json(raw)
        except ValidationError as e:
            raise StoreCorruptedError(keys.processed_key, str(e)) from e

    async def exists(self, keys: SourceKeys) -> bool:
        return await self.cache.get(keys.processed_key) is not None

    async def write(
        self, keys: SourceKeys, entries: Iterable[SitemapEntry]
    ) -> list[SitemapEntry]:
        snapshot = [
            entry.model_copy(update={"source_key": keys.source_id})
            for entry in sort_entries(entries)
        ]
        payload = json.dumps([entry.to_wire() for entry in snapshot], ensure_ascii=False)
        await self.cache.set(keys.processed_key, payload)
        logger.debug("Wrote %d entries to '%s'", len(snapshot), keys.processed_key)
        return snapshot

    async def merge_and_write(
        self, keys: SourceKeys, new_entries: list[SitemapEntry]
    ) -> Result[list[SitemapEntry] | None]:
        lock = CacheLock(
            self.cache,
            f"{CacheKeys.WRITE_LOCK_PREFIX}{keys.source_id}",
            ttl_seconds=self.write_lock_ttl,
            wait_seconds=self.write_lock_wait,
        )
        async with lock.hold() as acquired:
            if not acquired:
                logger.warning(
                    "Write lock for '%s' is busy; skipping write of %d entries",
                    keys.source_id,
                    len(new_entries),
                )
                return Result.failure(None, ErrorKind.LOCK_CONTENTION, "write lock busy")
            current = await self.read(keys) or []
            merged = merge_entries(current, new_entries)
            return Result.success(await self.write(keys, merged))
