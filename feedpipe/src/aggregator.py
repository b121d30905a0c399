import base64
import binascii
import json
from collections.abc import Mapping
from typing import Protocol

from .errors import InvalidCursorError
from .logger import logger
from .merger import IncrementalMerger
from .models import EngagementCounts, FeedEntry, FeedPage, SitemapEntry, sort_entries
from .source_keys import normalize_url


class EngagementProvider(Protocol):
    async def get_counts(self, urls: list[str]) -> Mapping[str, EngagementCounts]: ...


class BookmarkProvider(Protocol):
    async def get_source_urls(self, user_id: str) -> list[str]: ...


def encode_cursor(offset: int) -> str:
    payload = json.dumps({"offset": offset}, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(payload).decode().rstrip("=")


def decode_cursor(cursor: str | None) -> int:
    if not cursor:
        return 0
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        offset = json.loads(base64.urlsafe_b64decode(padded.encode()))["offset"]
    except (binascii.Error, ValueError, KeyError, TypeError) as e:
        raise InvalidCursorError(f"Malformed cursor '{cursor}'") from e
    if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
        raise InvalidCursorError(f"Malformed cursor '{cursor}'")
    return offset


def dedupe_by_url(entries: list[SitemapEntry]) -> list[SitemapEntry]:
    """Drop cross-posted duplicates; the first occurrence in the given order wins."""
    seen: set[str] = set()
    unique = []
    for entry in entries:
        key = normalize_url(entry.url)
        if key in seen:
            continue
        seen.add(key)
        unique.append(entry)
    return unique


class FeedAggregator:
    """One ranked, cursor-paginated feed across many sources.

    The cursor is an opaque offset into the deduplicated, newest-first list of
    all sources' entries. Engagement counts are joined by normalized URL and
    never computed here.
    """

    def __init__(
        self,
        merger: IncrementalMerger,
        engagement_provider: EngagementProvider | None = None,
        bookmark_provider: BookmarkProvider | None = None,
        default_page_size: int = 20,
    ):
        self.merger = merger
        self.engagement_provider = engagement_provider
        self.bookmark_provider = bookmark_provider
        self.default_page_size = default_page_size

    async def collect_entries(self, source_urls: list[str]) -> list[SitemapEntry]:
        results = await self.merger.ensure_many(source_urls)
        combined: list[SitemapEntry] = []
        for url in dict.fromkeys(source_urls):
            combined.extend(results[url].value)
        return dedupe_by_url(sort_entries(combined))

    async def get_feed_page(
        self,
        source_urls: list[str],
        cursor: str | None = None,
        page_size: int | None = None,
        engagement_counts: Mapping[str, EngagementCounts] | None = None,
    ) -> FeedPage:
        try:
            if page_size is None:
                page_size = self.default_page_size
            if page_size < 1:
                raise ValueError(f"page_size must be positive, got {page_size}")
            offset = decode_cursor(cursor)
            entries = await self.collect_entries(source_urls)
            window = entries[offset : offset + page_size]
            if engagement_counts is None:
                engagement_counts = await self._lookup_counts(window)
            end = offset + len(window)
            has_more = end < len(entries)
            logger.info(
                "Feed page from %d sources: %d-%d of %d entries",
                len(source_urls),
                offset,
                end,
                len(entries),
            )
            return FeedPage(
                entries=[
                    FeedEntry.from_entry(entry, engagement_counts.get(normalize_url(entry.url)))
                    for entry in window
                ],
                has_more=has_more,
                next_cursor=encode_cursor(end) if has_more else None,
                total=len(entries),
            )
        except InvalidCursorError as e:
            logger.warning("%s; returning an empty page", e)
            return FeedPage()
        except Exception as e:
            logger.error("Failed to build feed page: %s", e, exc_info=True)
            return FeedPage()

    async def get_user_feed_page(
        self, user_id: str, cursor: str | None = None, page_size: int | None = None
    ) -> FeedPage:
        if self.bookmark_provider is None:
            logger.error("No bookmark provider configured; cannot build feed for '%s'", user_id)
            return FeedPage()
        try:
            source_urls = await self.bookmark_provider.get_source_urls(user_id)
        except Exception as e:
            logger.error("Failed to load bookmarks for user '%s': %s", user_id, e)
            return FeedPage()
        if not source_urls:
            logger.info("User '%s' has no bookmarked sources", user_id)
            return FeedPage()
        return await self.get_feed_page(source_urls, cursor, page_size)

    async def _lookup_counts(
        self, window: list[SitemapEntry]
    ) -> Mapping[str, EngagementCounts]:
        if self.engagement_provider is None or not window:
            return {}
        urls = [normalize_url(entry.url) for entry in window]
        try:
            return await self.engagement_provider.get_counts(urls)
        except Exception as e:
            logger.warning("Engagement counts unavailable, serving zeros: %s", e)
            return {}
