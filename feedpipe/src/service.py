import hmac
from collections.abc import Mapping
from typing import TYPE_CHECKING

from .aggregator import BookmarkProvider, EngagementProvider, FeedAggregator
from .cache import CacheStore, RedisCacheStore
from .constants import CacheKeys
from .entry_store import ProcessedEntryStore
from .errors import UnauthorizedError
from .http_client import HttpClient
from .logger import logger
from .merger import IncrementalMerger
from .metadata import MetadataEnricher, RateLimiter
from .models import EngagementCounts, FeedPage, SitemapPage, WarmReport
from .raw_cache import RawCache
from .results import ErrorKind
from .warmer import CacheWarmer

if TYPE_CHECKING:
    from feedpipe.configs import Config, Secrets

ITEMS_PER_PAGE: int = 10


class FeedService:
    """Entry points for page handlers and the scheduled cache warmer."""

    def __init__(
        self,
        cache: CacheStore,
        merger: IncrementalMerger,
        aggregator: FeedAggregator,
        warmer: CacheWarmer,
        warm_token: str | None = None,
        items_per_page: int = ITEMS_PER_PAGE,
        warm_source_urls: list[str] | None = None,
        include_registered_sources: bool = True,
    ):
        self.cache = cache
        self.merger = merger
        self.aggregator = aggregator
        self.warmer = warmer
        self.warm_token = warm_token
        self.items_per_page = items_per_page
        self.warm_source_urls = warm_source_urls or []
        self.include_registered_sources = include_registered_sources

    async def get_feed_page(
        self,
        source_urls: list[str],
        cursor: str | None = None,
        page_size: int | None = None,
        engagement_counts: Mapping[str, EngagementCounts] | None = None,
    ) -> FeedPage:
        return await self.aggregator.get_feed_page(
            source_urls, cursor, page_size, engagement_counts
        )

    async def get_user_feed_page(
        self, user_id: str, cursor: str | None = None, page_size: int | None = None
    ) -> FeedPage:
        return await self.aggregator.get_user_feed_page(user_id, cursor, page_size)

    async def get_sitemap_page(self, source_url: str, page: int = 1) -> SitemapPage:
        """Offset pagination over one source's processed entries, 1-based."""
        page = max(page, 1)
        try:
            entries = await self.merger.ensure_up_to_date(source_url)
        except Exception as e:
            logger.error("Failed to load sitemap page for '%s': %s", source_url, e, exc_info=True)
            return SitemapPage(current_page=page, page_size=self.items_per_page)
        start = (page - 1) * self.items_per_page
        end = start + self.items_per_page
        return SitemapPage(
            entries=entries[start:end],
            has_more=end < len(entries),
            total=len(entries),
            current_page=page,
            page_size=self.items_per_page,
        )

    def _authorize(self, token: str | None) -> None:
        if not self.warm_token:
            raise UnauthorizedError("Cache warming is disabled: no token configured")
        if not token or not hmac.compare_digest(token.encode(), self.warm_token.encode()):
            raise UnauthorizedError("Invalid cache warming token")

    async def known_sources(self) -> list[str]:
        sources = list(self.warm_source_urls)
        if self.include_registered_sources:
            try:
                sources.extend(sorted(await self.cache.smembers(CacheKeys.SOURCE_REGISTRY)))
            except Exception as e:
                logger.warning("Failed to read the source registry: %s", e)
        return list(dict.fromkeys(sources))

    async def warm_cache(
        self, token: str | None, source_urls: list[str] | None = None, full: bool = True
    ) -> WarmReport:
        """Refresh every known source. Full rebuilds unless ``full`` is False."""
        self._authorize(token)
        sources = source_urls if source_urls else await self.known_sources()
        if full:
            return await self.warmer.warm(sources)
        return await self._refresh_incrementally(sources)

    async def _refresh_incrementally(self, source_urls: list[str]) -> WarmReport:
        report = WarmReport()
        results = await self.merger.ensure_many(source_urls)
        for url, result in results.items():
            if result.ok or result.error == ErrorKind.PARTIAL_BATCH:
                report.refreshed.append(url)
            elif result.error == ErrorKind.LOCK_CONTENTION:
                report.skipped.append(url)
            else:
                report.failed.append(url)
        logger.info(
            "Incremental refresh done: %d refreshed, %d skipped, %d failed",
            len(report.refreshed),
            len(report.skipped),
            len(report.failed),
        )
        return report


def build_service(
    config: "Config",
    secrets: "Secrets",
    cache: CacheStore | None = None,
    engagement_provider: EngagementProvider | None = None,
    bookmark_provider: BookmarkProvider | None = None,
    show_progress: bool = False,
) -> FeedService:
    if cache is None:
        cache = RedisCacheStore.from_url(secrets.redis_url or config.cache.redis_url)
    http_client = HttpClient(timeout=config.sitemap.request_timeout_seconds)
    enricher = MetadataEnricher(
        cache,
        http_client,
        RateLimiter(
            min_interval=config.metadata.min_interval_seconds,
            max_concurrency=config.metadata.max_concurrency,
        ),
        api_key=secrets.meta_tags_api_key,
        api_url=config.metadata.api_url,
        timeout=config.metadata.timeout_seconds,
    )
    merger = IncrementalMerger(
        cache,
        RawCache(cache, http_client, ttl_seconds=config.cache.raw_ttl_seconds),
        ProcessedEntryStore(
            cache,
            write_lock_ttl=config.cache.write_lock_ttl_seconds,
            write_lock_wait=config.cache.write_lock_wait_seconds,
        ),
        enricher,
        enrich_batch_size=config.metadata.batch_size,
        max_child_sitemaps=config.sitemap.max_child_sitemaps,
        source_batch_size=config.aggregation.source_batch_size,
        batch_delay_seconds=config.aggregation.batch_delay_seconds,
    )
    return FeedService(
        cache,
        merger,
        FeedAggregator(
            merger,
            engagement_provider=engagement_provider,
            bookmark_provider=bookmark_provider,
            default_page_size=config.aggregation.feed_page_size,
        ),
        CacheWarmer(
            cache,
            merger,
            lock_ttl_seconds=config.cache.rebuild_lock_ttl_seconds,
            show_progress=show_progress,
        ),
        warm_token=secrets.cache_warm_token,
        items_per_page=config.sitemap.items_per_page,
        warm_source_urls=config.warming.source_urls,
        include_registered_sources=config.warming.include_registered_sources,
    )
