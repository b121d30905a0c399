from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from typing import Any

import pytest

os.environ.setdefault("FEEDPIPE_FILE_LOGGING", "0")

from feedpipe.src import (  # noqa: E402
    EntryMeta,
    IncrementalMerger,
    MetadataEnricher,
    ProcessedEntryStore,
    RateLimiter,
    RawCache,
    SitemapEntry,
    SourceFetchError,
)


class InMemoryCacheStore:
    """Dict-backed stand-in for the Redis cache store. Expiry is recorded, not enforced."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.expiries: dict[str, int | None] = {}
        self.set_calls: list[str] = []

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(
        self, key: str, value: str, ex: int | None = None, nx: bool = False
    ) -> bool:
        if nx and key in self.data:
            return False
        self.data[key] = value
        self.expiries[key] = ex
        self.set_calls.append(key)
        return True

    async def mget(self, keys: list[str]) -> list[str | None]:
        return [self.data.get(key) for key in keys]

    async def delete(self, key: str) -> int:
        return 1 if self.data.pop(key, None) is not None else 0

    async def delete_if_equals(self, key: str, value: str) -> bool:
        if self.data.get(key) != value:
            return False
        del self.data[key]
        return True

    async def sadd(self, key: str, *members: str) -> int:
        members_set = self.sets.setdefault(key, set())
        added = len(set(members) - members_set)
        members_set.update(members)
        return added

    async def smembers(self, key: str) -> set[str]:
        return set(self.sets.get(key, set()))


class FakeHttpClient:
    """Serves scripted documents and metadata API payloads.

    ``documents`` maps a URL to its body or to an exception to raise.
    ``meta_payloads`` maps an entry URL to the API JSON payload, an exception,
    or a number of seconds to hang before answering.
    """

    def __init__(
        self,
        documents: dict[str, Any] | None = None,
        meta_payloads: dict[str, Any] | None = None,
    ):
        self.documents = documents or {}
        self.meta_payloads = meta_payloads or {}
        self.text_calls: list[str] = []
        self.json_calls: list[str] = []

    async def get_text(self, url: str) -> str:
        self.text_calls.append(url)
        document = self.documents.get(url)
        if document is None:
            raise SourceFetchError(url, "404 Client Error")
        if isinstance(document, Exception):
            raise document
        return document

    async def get_json(
        self,
        url: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> Any:
        entry_url = (params or {}).get("url", "")
        self.json_calls.append(entry_url)
        payload = self.meta_payloads.get(entry_url)
        if isinstance(payload, Exception):
            raise payload
        if isinstance(payload, (int, float)):
            await asyncio.sleep(payload)
            return meta_payload(f"Late {entry_url}")
        if payload is None:
            return meta_payload(f"Title of {entry_url}")
        return payload


def meta_payload(title: str, description: str = "", image: str | None = None) -> dict:
    tags = []
    if description:
        tags.append({"property": "og:description", "content": description})
    if image:
        tags.append({"property": "og:image", "content": image})
    return {"title": title, "meta_tags": tags}


def utc(day: str) -> datetime:
    return datetime.fromisoformat(day).replace(tzinfo=timezone.utc)


def make_entry(url: str, lastmod: str, title: str = "", source_key: str = "") -> SitemapEntry:
    return SitemapEntry(
        url=url, lastmod=utc(lastmod), meta=EntryMeta(title=title), source_key=source_key
    )


def sitemap_xml(entries: list[tuple[str, str]]) -> str:
    urls = "".join(
        f"<url><loc>{url}</loc><lastmod>{lastmod}</lastmod></url>" for url, lastmod in entries
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{urls}</urlset>'
    )


def sitemap_index_xml(children: list[str]) -> str:
    sitemaps = "".join(f"<sitemap><loc>{child}</loc></sitemap>" for child in children)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{sitemaps}</sitemapindex>'
    )


@pytest.fixture
def cache() -> InMemoryCacheStore:
    return InMemoryCacheStore()


@pytest.fixture
def http_client() -> FakeHttpClient:
    return FakeHttpClient()


@pytest.fixture
def enricher(cache, http_client) -> MetadataEnricher:
    return MetadataEnricher(
        cache,
        http_client,
        RateLimiter(min_interval=0.0, max_concurrency=5),
        api_key="test-key",
        api_url="https://meta.test/api",
        timeout=0.2,
    )


@pytest.fixture
def store(cache) -> ProcessedEntryStore:
    return ProcessedEntryStore(cache, write_lock_ttl=30, write_lock_wait=0.1)


@pytest.fixture
def merger(cache, http_client, store, enricher) -> IncrementalMerger:
    return IncrementalMerger(
        cache,
        RawCache(cache, http_client, ttl_seconds=86400),
        store,
        enricher,
        enrich_batch_size=2,
        max_child_sitemaps=5,
        source_batch_size=3,
        batch_delay_seconds=0.0,
    )
