import asyncio

from .cache import CacheStore
from .constants import CacheKeys, DocumentKind
from .entry_store import ProcessedEntryStore
from .errors import SourceFetchError, StoreCorruptedError
from .feed_parser import parse_document
from .logger import logger
from .metadata import MetadataEnricher
from .models import EntryMeta, SitemapEntry
from .raw_cache import RawCache
from .results import ErrorKind, Result
from .source_keys import SourceKeys, resolve_keys
from .utils import EPOCH, chunked


def _merge_meta(parsed: EntryMeta, fetched: EntryMeta | None) -> EntryMeta:
    if fetched is None:
        return parsed
    return EntryMeta(
        title=fetched.title or parsed.title,
        description=fetched.description or parsed.description,
        image=fetched.image or parsed.image,
    )


def _needs_enrichment(entry: SitemapEntry) -> bool:
    meta = entry.meta
    return not (meta.title and meta.description and meta.image)


class IncrementalMerger:
    """Keeps each source's processed store in step with its origin document.

    Only entries newer than the store's high-water mark and not already stored
    are enriched and merged, so repeated runs over an unchanged document do no
    enrichment and no writes.
    """

    def __init__(
        self,
        cache: CacheStore,
        raw_cache: RawCache,
        store: ProcessedEntryStore,
        enricher: MetadataEnricher,
        enrich_batch_size: int = 10,
        max_child_sitemaps: int = 5,
        source_batch_size: int = 3,
        batch_delay_seconds: float = 0.5,
    ):
        self.cache = cache
        self.raw_cache = raw_cache
        self.store = store
        self.enricher = enricher
        self.enrich_batch_size = enrich_batch_size
        self.max_child_sitemaps = max_child_sitemaps
        self.source_batch_size = source_batch_size
        self.batch_delay_seconds = batch_delay_seconds

    async def ensure_up_to_date(self, source_url: str) -> list[SitemapEntry]:
        return (await self.refresh(source_url)).value

    async def refresh(self, source_url: str, full: bool = False) -> Result[list[SitemapEntry]]:
        """Bring one source up to date and return its full processed list.

        With ``full=True`` the raw document is refetched regardless of its TTL
        and the high-water mark is ignored; entries are still deduplicated by URL.
        """
        keys = resolve_keys(source_url)
        if not keys.source_id:
            logger.error("Cannot resolve a source key for '%s'", source_url)
            return Result.failure([], ErrorKind.UNEXPECTED, "empty source identifier")
        try:
            existing = await self.store.read(keys)
        except StoreCorruptedError as e:
            logger.error("Leaving corrupted store untouched: %s", e)
            return Result.failure([], ErrorKind.STORE, str(e))
        except Exception as e:
            logger.error("Failed to read processed store for '%s': %s", source_url, e)
            return Result.failure([], ErrorKind.TRANSIENT_IO, str(e))

        store_exists = existing is not None
        existing = existing or []
        try:
            return await self._merge(source_url, keys, existing, store_exists, full)
        except Exception as e:
            logger.error("Merge failed for '%s': %s", source_url, e, exc_info=True)
            return Result.failure(existing, ErrorKind.UNEXPECTED, str(e))

    async def _merge(
        self,
        source_url: str,
        keys: SourceKeys,
        existing: list[SitemapEntry],
        store_exists: bool,
        full: bool,
    ) -> Result[list[SitemapEntry]]:
        high_water_mark = (
            EPOCH if full or not existing else max(entry.lastmod for entry in existing)
        )
        try:
            parsed = await self._load_entries(source_url, keys, force_fetch=full)
        except SourceFetchError as e:
            logger.error("Serving %d stored entries for '%s': %s", len(existing), source_url, e)
            return Result.failure(existing, ErrorKind.TRANSIENT_IO, str(e))

        known_urls = {entry.url for entry in existing}
        candidates = [entry for entry in parsed.value if entry.lastmod > high_water_mark]
        new_entries = [entry for entry in candidates if entry.url not in known_urls]
        logger.info(
            "Source '%s': %d parsed, %d newer than %s, %d new",
            keys.source_id,
            len(parsed.value),
            len(candidates),
            high_water_mark.isoformat(),
            len(new_entries),
        )

        if not new_entries and store_exists:
            await self._register(source_url)
            if not parsed.ok:
                return Result.failure(existing, parsed.error, parsed.detail)
            return Result.success(existing)

        enriched = await self._enrich(new_entries)
        written = await self.store.merge_and_write(keys, enriched)
        if not written.ok or written.value is None:
            return Result.failure(existing, written.error or ErrorKind.STORE, written.detail)
        await self._register(source_url)
        if not parsed.ok:
            return Result.failure(written.value, parsed.error, parsed.detail)
        return Result.success(written.value)

    async def _load_entries(
        self, source_url: str, keys: SourceKeys, force_fetch: bool
    ) -> Result[list[SitemapEntry]]:
        fetch = self.raw_cache.refresh if force_fetch else self.raw_cache.get
        raw = await fetch(source_url)
        parsed = parse_document(raw.document)
        document = parsed.value
        if document.kind != DocumentKind.SITEMAP_INDEX:
            return Result(value=document.entries, error=parsed.error, detail=parsed.detail)

        children = document.child_sitemaps[: self.max_child_sitemaps]
        if len(document.child_sitemaps) > len(children):
            logger.info(
                "Sitemap index '%s' lists %d sitemaps; reading the first %d",
                source_url,
                len(document.child_sitemaps),
                len(children),
            )
        child_results = await asyncio.gather(
            *(self._load_child(keys, child_url, fetch) for child_url in children)
        )
        entries: list[SitemapEntry] = []
        seen_urls: set[str] = set()
        failures = 0
        for child_result in child_results:
            failures += 0 if child_result.ok else 1
            for entry in child_result.value:
                if entry.url not in seen_urls:
                    seen_urls.add(entry.url)
                    entries.append(entry)
        if failures:
            return Result.failure(
                entries, ErrorKind.PARTIAL_BATCH, f"{failures} child sitemaps failed"
            )
        return Result.success(entries)

    async def _load_child(
        self, keys: SourceKeys, child_url: str, fetch
    ) -> Result[list[SitemapEntry]]:
        try:
            raw = await fetch(child_url, raw_key=CacheKeys.raw_child(keys.source_id, child_url))
        except SourceFetchError as e:
            logger.warning("Skipping child sitemap '%s': %s", child_url, e)
            return Result.failure([], ErrorKind.TRANSIENT_IO, str(e))
        parsed = parse_document(raw.document)
        return Result(value=parsed.value.entries, error=parsed.error, detail=parsed.detail)

    async def _enrich(self, entries: list[SitemapEntry]) -> list[SitemapEntry]:
        to_enrich = [entry for entry in entries if _needs_enrichment(entry)]
        fetched: dict[str, EntryMeta] = {}
        for batch in chunked(to_enrich, self.enrich_batch_size):
            fetched.update(await self.enricher.enrich_batch([entry.url for entry in batch]))
        return [
            entry.model_copy(update={"meta": _merge_meta(entry.meta, fetched.get(entry.url))})
            for entry in entries
        ]

    async def _register(self, source_url: str) -> None:
        try:
            await self.cache.sadd(CacheKeys.SOURCE_REGISTRY, source_url)
        except Exception as e:
            logger.warning("Failed to register source '%s': %s", source_url, e)

    async def ensure_many(
        self, source_urls: list[str], full: bool = False
    ) -> dict[str, Result[list[SitemapEntry]]]:
        """Refresh several sources, a few at a time with a pause between batches.

        URLs that resolve to the same source are refreshed once and share the result.
        """
        by_source: dict[str, str] = {}
        for url in source_urls:
            by_source.setdefault(resolve_keys(url).source_id, url)
        unique_urls = list(by_source.values())

        refreshed: dict[str, Result[list[SitemapEntry]]] = {}
        for i, batch in enumerate(chunked(unique_urls, self.source_batch_size)):
            if i > 0 and self.batch_delay_seconds > 0:
                await asyncio.sleep(self.batch_delay_seconds)
            results = await asyncio.gather(
                *(self.refresh(url, full=full) for url in batch), return_exceptions=True
            )
            for url, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.error("Refresh of '%s' raised: %s", url, result)
                    result = Result.failure([], ErrorKind.UNEXPECTED, str(result))
                elif not result.ok:
                    logger.warning(
                        "Source '%s' degraded (%s): %s", url, result.error, result.detail
                    )
                refreshed[url] = result

        return {
            url: refreshed[by_source[resolve_keys(url).source_id]] for url in source_urls
        }
