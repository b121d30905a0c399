import asyncio

from tqdm.asyncio import tqdm as async_tqdm

from .cache import CacheStore
from .constants import CacheKeys
from .errors import SourceFetchError
from .locks import CacheLock
from .logger import logger
from .merger import IncrementalMerger
from .models import SitemapEntry, WarmReport
from .results import ErrorKind, Result
from .source_keys import resolve_keys
from .utils import RetryableBase, chunked, measure_execution_time

REBUILD_LOCK_TTL: int = 300

_SKIPPED_ERRORS = {ErrorKind.LOCK_CONTENTION}
_DEGRADED_ERRORS = {ErrorKind.PARTIAL_BATCH}


class CacheWarmer(RetryableBase):
    """Background catch-up: full rebuilds of sources under a per-source lock.

    A rebuild refetches the origin document regardless of its TTL and merges
    every entry it finds, so entries the incremental path never saw (because
    they were older than the high-water mark) are picked up.
    """

    def __init__(
        self,
        cache: CacheStore,
        merger: IncrementalMerger,
        lock_ttl_seconds: int = REBUILD_LOCK_TTL,
        show_progress: bool = False,
    ):
        self.cache = cache
        self.merger = merger
        self.lock_ttl_seconds = lock_ttl_seconds
        self.show_progress = show_progress

    async def _refresh_or_raise(self, source_url: str) -> Result[list[SitemapEntry]]:
        result = await self.merger.refresh(source_url, full=True)
        if result.error == ErrorKind.TRANSIENT_IO:
            raise SourceFetchError(source_url, result.detail)
        return result

    async def rebuild_source(self, source_url: str) -> Result[list[SitemapEntry]]:
        source_id = resolve_keys(source_url).source_id
        lock = CacheLock(
            self.cache,
            f"{CacheKeys.REBUILD_LOCK_PREFIX}{source_id}",
            ttl_seconds=self.lock_ttl_seconds,
        )
        async with lock.hold() as acquired:
            if not acquired:
                logger.info("Rebuild of '%s' already in progress; skipping", source_id)
                return Result.failure([], ErrorKind.LOCK_CONTENTION, "rebuild lock held")
            refresh = self._retry(f"rebuild {source_id}", SourceFetchError)(
                self._refresh_or_raise
            )
            try:
                result = await refresh(source_url)
            except SourceFetchError as e:
                logger.error("Giving up on rebuild of '%s': %s", source_id, e)
                return Result.failure([], ErrorKind.TRANSIENT_IO, str(e))
            logger.info(
                "Rebuilt '%s': %d entries in store", source_id, len(result.value)
            )
            return result

    async def _rebuild_isolated(self, source_url: str) -> Result[list[SitemapEntry]]:
        try:
            return await self.rebuild_source(source_url)
        except Exception as e:
            logger.error("Rebuild of '%s' raised: %s", source_url, e, exc_info=True)
            return Result.failure([], ErrorKind.UNEXPECTED, str(e))

    @measure_execution_time
    async def warm(self, source_urls: list[str]) -> WarmReport:
        report = WarmReport()
        unique_urls = list(dict.fromkeys(url for url in source_urls if url))
        if not unique_urls:
            logger.info("No sources to warm")
            return report
        logger.info("Warming %d sources", len(unique_urls))

        batches = list(chunked(unique_urls, self.merger.source_batch_size))
        for i, batch in enumerate(batches):
            if i > 0 and self.merger.batch_delay_seconds > 0:
                await asyncio.sleep(self.merger.batch_delay_seconds)
            results = await async_tqdm.gather(
                *(self._rebuild_isolated(url) for url in batch),
                desc=f"Warming batch {i + 1}/{len(batches)}",
                disable=not self.show_progress,
            )
            for url, result in zip(batch, results):
                if result.ok or result.error in _DEGRADED_ERRORS:
                    report.refreshed.append(url)
                elif result.error in _SKIPPED_ERRORS:
                    report.skipped.append(url)
                else:
                    logger.warning(
                        "Warming '%s' failed (%s): %s", url, result.error, result.detail
                    )
                    report.failed.append(url)

        logger.info(
            "Warm cycle done: %d refreshed, %d skipped, %d failed",
            len(report.refreshed),
            len(report.skipped),
            len(report.failed),
        )
        return report
