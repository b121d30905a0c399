import asyncio
from pprint import pformat
from typing import Final

from feedpipe.configs import Config
from feedpipe.src import (
    DocumentKind,
    HttpClient,
    SourceFetchError,
    logger,
    parse_document,
    resolve_keys,
)

MAX_CHILD_SITEMAPS: Final[int] = 2


async def _fetch_and_parse(http_client: HttpClient, url: str) -> None:
    keys = resolve_keys(url)
    logger.info("Source '%s' resolves to '%s'", url, keys.source_id)
    try:
        document = await http_client.get_text(url)
    except SourceFetchError as e:
        logger.error("%s", e)
        return
    result = parse_document(document)
    if not result.ok:
        logger.warning("Parse outcome for '%s': %s (%s)", url, result.error, result.detail)
    parsed = result.value
    if parsed.kind == DocumentKind.SITEMAP_INDEX:
        logger.info("Sitemap index with %d children", len(parsed.child_sitemaps))
        for child_url in parsed.child_sitemaps[:MAX_CHILD_SITEMAPS]:
            await _fetch_and_parse(http_client, child_url)
        return
    logger.info("Found %d %s entries", len(parsed.entries), parsed.kind.value)
    if parsed.entries:
        logger.info("Newest: '%s'", [entry.url for entry in parsed.entries[:5]])
        logger.debug(pformat([entry.to_wire() for entry in parsed.entries]))


if __name__ == "__main__":
    config = Config.load()
    http_client = HttpClient(timeout=config.sitemap.request_timeout_seconds)
    for url in config.warming.source_urls:
        asyncio.run(_fetch_and_parse(http_client, url))
