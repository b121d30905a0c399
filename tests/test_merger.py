"""Tests for merger module."""

import asyncio
import json
from unittest.mock import patch

from conftest import make_entry, sitemap_index_xml, sitemap_xml

from feedpipe.src import CacheKeys, ErrorKind, resolve_keys

SOURCE_URL = "https://example.com/sitemap.xml"
KEYS = resolve_keys(SOURCE_URL)


def _stored_urls(cache) -> list[str]:
    return [item["url"] for item in json.loads(cache.data[KEYS.processed_key])]


class TestRefresh:
    def test_only_entries_past_the_high_water_mark_are_new(
        self, cache, http_client, store, merger
    ):
        http_client.documents[SOURCE_URL] = sitemap_xml(
            [("a1", "2024-01-03"), ("a2", "2024-01-01"), ("a3", "2024-01-05")]
        )

        async def run():
            await store.write(
                KEYS, [make_entry("a1", "2024-01-03"), make_entry("a2", "2024-01-01")]
            )
            return await merger.refresh(SOURCE_URL)

        result = asyncio.run(run())

        assert result.ok
        assert [entry.url for entry in result.value] == ["a3", "a1", "a2"]
        assert _stored_urls(cache) == ["a3", "a1", "a2"]
        assert http_client.json_calls == ["a3"]
        assert result.value[0].meta.title == "Title of a3"

    def test_first_run_creates_the_store(self, cache, http_client, merger):
        http_client.documents[SOURCE_URL] = sitemap_xml(
            [("https://example.com/p1", "2024-01-01"), ("https://example.com/p2", "2024-01-02")]
        )

        entries = asyncio.run(merger.ensure_up_to_date(SOURCE_URL))

        assert [entry.url for entry in entries] == [
            "https://example.com/p2",
            "https://example.com/p1",
        ]
        assert all(not entry.meta.is_empty for entry in entries)
        assert SOURCE_URL in cache.sets[CacheKeys.SOURCE_REGISTRY]

    def test_empty_document_still_creates_an_empty_store(self, cache, http_client, merger):
        http_client.documents[SOURCE_URL] = sitemap_xml([])

        entries = asyncio.run(merger.ensure_up_to_date(SOURCE_URL))

        assert entries == []
        assert json.loads(cache.data[KEYS.processed_key]) == []

    def test_second_run_is_idempotent(self, cache, http_client, merger):
        http_client.documents[SOURCE_URL] = sitemap_xml(
            [("a1", "2024-01-03"), ("a2", "2024-01-01")]
        )

        async def run():
            await merger.refresh(SOURCE_URL)
            snapshot = cache.data[KEYS.processed_key]
            writes = cache.set_calls.count(KEYS.processed_key)
            await merger.refresh(SOURCE_URL)
            return snapshot, writes

        snapshot, writes = asyncio.run(run())

        assert cache.data[KEYS.processed_key] == snapshot
        assert cache.set_calls.count(KEYS.processed_key) == writes
        assert sorted(http_client.json_calls) == ["a1", "a2"]

    def test_store_grows_monotonically(self, cache, http_client, merger):
        documents = [
            [("a1", "2024-01-01")],
            [("a2", "2024-01-02")],
            [("a2", "2024-01-02"), ("a3", "2024-01-04")],
        ]

        async def run():
            sizes = []
            for document in documents:
                http_client.documents[SOURCE_URL] = sitemap_xml(document)
                await cache.delete(KEYS.raw_key)
                entries = await merger.ensure_up_to_date(SOURCE_URL)
                sizes.append(len(entries))
            return sizes

        sizes = asyncio.run(run())

        assert sizes == [1, 2, 3]
        assert _stored_urls(cache) == ["a3", "a2", "a1"]

    def test_entries_older_than_high_water_mark_are_ignored(self, cache, http_client, merger):
        async def run():
            http_client.documents[SOURCE_URL] = sitemap_xml([("a1", "2024-01-05")])
            await merger.refresh(SOURCE_URL)
            await cache.delete(KEYS.raw_key)
            http_client.documents[SOURCE_URL] = sitemap_xml(
                [("a1", "2024-01-05"), ("old", "2023-12-01")]
            )
            return await merger.refresh(SOURCE_URL)

        result = asyncio.run(run())

        assert [entry.url for entry in result.value] == ["a1"]

    def test_full_refresh_ignores_high_water_mark(self, cache, http_client, merger):
        async def run():
            http_client.documents[SOURCE_URL] = sitemap_xml([("a1", "2024-01-05")])
            await merger.refresh(SOURCE_URL)
            http_client.documents[SOURCE_URL] = sitemap_xml(
                [("a1", "2024-01-05"), ("old", "2023-12-01")]
            )
            return await merger.refresh(SOURCE_URL, full=True)

        result = asyncio.run(run())

        assert [entry.url for entry in result.value] == ["a1", "old"]
        assert http_client.text_calls == [SOURCE_URL, SOURCE_URL]

    def test_fetch_failure_keeps_existing_entries(self, cache, store, merger):
        async def run():
            await store.write(KEYS, [make_entry("a1", "2024-01-03")])
            return await merger.refresh(SOURCE_URL)

        result = asyncio.run(run())

        assert result.error == ErrorKind.TRANSIENT_IO
        assert [entry.url for entry in result.value] == ["a1"]
        assert _stored_urls(cache) == ["a1"]

    def test_parse_failure_adds_nothing(self, cache, http_client, store, merger):
        http_client.documents[SOURCE_URL] = "<urlset><url>"

        async def run():
            await store.write(KEYS, [make_entry("a1", "2024-01-03")])
            return await merger.refresh(SOURCE_URL)

        result = asyncio.run(run())

        assert result.error == ErrorKind.PARSE
        assert [entry.url for entry in result.value] == ["a1"]

    def test_corrupted_store_is_not_overwritten(self, cache, http_client, merger):
        cache.data[KEYS.processed_key] = "garbage"
        http_client.documents[SOURCE_URL] = sitemap_xml([("a1", "2024-01-03")])

        result = asyncio.run(merger.refresh(SOURCE_URL))

        assert result.error == ErrorKind.STORE
        assert result.value == []
        assert cache.data[KEYS.processed_key] == "garbage"

    def test_busy_write_lock_returns_existing_entries(self, cache, http_client, store, merger):
        http_client.documents[SOURCE_URL] = sitemap_xml([("a3", "2024-01-05")])

        async def run():
            await store.write(KEYS, [make_entry("a1", "2024-01-03")])
            cache.data["lock:write:example"] = "another-writer"
            return await merger.refresh(SOURCE_URL)

        result = asyncio.run(run())

        assert result.error == ErrorKind.LOCK_CONTENTION
        assert [entry.url for entry in result.value] == ["a1"]

    def test_feed_entries_with_complete_metadata_skip_enrichment(self, http_client, merger):
        feed_url = "https://example.com/feed.xml"
        http_client.documents[feed_url] = """<rss version="2.0"><channel><title>t</title>
            <item><title>Post</title><link>https://example.com/post</link>
            <description><![CDATA[Summary <img src="https://img.example.com/p.png"/>]]></description>
            <pubDate>Wed, 03 Jan 2024 10:00:00 GMT</pubDate></item>
            </channel></rss>"""

        entries = asyncio.run(merger.ensure_up_to_date(feed_url))

        assert entries[0].meta.title == "Post"
        assert http_client.json_calls == []


class TestSitemapIndex:
    def test_child_sitemaps_are_merged(self, cache, http_client, merger):
        children = ["https://example.com/sitemap-1.xml", "https://example.com/sitemap-2.xml"]
        http_client.documents[SOURCE_URL] = sitemap_index_xml(children)
        http_client.documents[children[0]] = sitemap_xml([("c1", "2024-01-01")])
        http_client.documents[children[1]] = sitemap_xml([("c2", "2024-01-02")])

        result = asyncio.run(merger.refresh(SOURCE_URL))

        assert result.ok
        assert [entry.url for entry in result.value] == ["c2", "c1"]
        assert CacheKeys.raw_child("example", children[0]) in cache.data

    def test_failing_child_is_partial(self, http_client, merger):
        children = ["https://example.com/sitemap-1.xml", "https://example.com/missing.xml"]
        http_client.documents[SOURCE_URL] = sitemap_index_xml(children)
        http_client.documents[children[0]] = sitemap_xml([("c1", "2024-01-01")])

        result = asyncio.run(merger.refresh(SOURCE_URL))

        assert result.error == ErrorKind.PARTIAL_BATCH
        assert [entry.url for entry in result.value] == ["c1"]

    def test_child_count_is_capped(self, http_client, merger):
        merger.max_child_sitemaps = 1
        children = ["https://example.com/sitemap-1.xml", "https://example.com/sitemap-2.xml"]
        http_client.documents[SOURCE_URL] = sitemap_index_xml(children)
        http_client.documents[children[0]] = sitemap_xml([("c1", "2024-01-01")])
        http_client.documents[children[1]] = sitemap_xml([("c2", "2024-01-02")])

        result = asyncio.run(merger.refresh(SOURCE_URL))

        assert [entry.url for entry in result.value] == ["c1"]
        assert children[1] not in http_client.text_calls


class TestEnsureMany:
    def test_sources_are_isolated(self, http_client, merger):
        http_client.documents["https://one.com/sitemap.xml"] = sitemap_xml([("o1", "2024-01-01")])
        urls = ["https://one.com/sitemap.xml", "https://two.com/sitemap.xml"]

        results = asyncio.run(merger.ensure_many(urls))

        assert results[urls[0]].ok
        assert [entry.url for entry in results[urls[0]].value] == ["o1"]
        assert results[urls[1]].error == ErrorKind.TRANSIENT_IO
        assert results[urls[1]].value == []

    def test_runs_in_batches_with_a_delay(self, http_client, merger):
        urls = [f"https://site{i}.com/sitemap.xml" for i in range(7)]
        for url in urls:
            http_client.documents[url] = sitemap_xml([])
        merger.batch_delay_seconds = 0.01

        with patch("feedpipe.src.merger.asyncio.sleep", wraps=asyncio.sleep) as mock_sleep:
            asyncio.run(merger.ensure_many(urls))

        assert mock_sleep.call_count == 2

    def test_same_source_urls_share_one_refresh(self, http_client, merger):
        http_client.documents["https://www.one.com/sitemap.xml"] = sitemap_xml([("o1", "2024-01-01")])
        urls = ["https://www.one.com/sitemap.xml", "http://one.com/"]

        results = asyncio.run(merger.ensure_many(urls))

        assert results[urls[0]] is results[urls[1]]
        assert http_client.text_calls == ["https://www.one.com/sitemap.xml"]

    def test_unexpected_exception_is_isolated(self, http_client, merger):
        http_client.documents["https://one.com/sitemap.xml"] = sitemap_xml([("o1", "2024-01-01")])
        http_client.documents["https://two.com/sitemap.xml"] = RuntimeError("kaboom")
        urls = ["https://one.com/sitemap.xml", "https://two.com/sitemap.xml"]

        results = asyncio.run(merger.ensure_many(urls))

        assert results[urls[0]].ok
        assert results[urls[1]].error == ErrorKind.UNEXPECTED

    def test_empty_source_url_is_rejected(self, merger):
        result = asyncio.run(merger.refresh(""))

        assert result.error == ErrorKind.UNEXPECTED
        assert result.value == []
