from pydantic import BaseModel

from .cache import CacheStore
from .http_client import HttpClient
from .logger import logger
from .source_keys import resolve_keys

SITEMAP_RAW_TTL: int = 86400


class RawDocument(BaseModel):
    document: str
    is_fresh: bool


class RawCache:
    """Last fetched body of each source, kept for ``ttl_seconds``.

    Fetch failures propagate as ``SourceFetchError``; whoever called decides
    whether to retry.
    """

    def __init__(
        self,
        cache: CacheStore,
        http_client: HttpClient,
        ttl_seconds: int = SITEMAP_RAW_TTL,
    ):
        self.cache = cache
        self.http_client = http_client
        self.ttl_seconds = ttl_seconds

    async def get(self, source_url: str, raw_key: str | None = None) -> RawDocument:
        raw_key = raw_key or resolve_keys(source_url).raw_key
        cached = await self.cache.get(raw_key)
        if cached is not None:
            logger.debug("RAW SITEMAP CACHE HIT for '%s'", source_url)
            return RawDocument(document=cached, is_fresh=False)
        logger.debug("RAW SITEMAP CACHE MISS for '%s'", source_url)
        return await self._fetch_and_store(source_url, raw_key)

    async def refresh(self, source_url: str, raw_key: str | None = None) -> RawDocument:
        raw_key = raw_key or resolve_keys(source_url).raw_key
        return await self._fetch_and_store(source_url, raw_key)

    async def _fetch_and_store(self, source_url: str, raw_key: str) -> RawDocument:
        document = await self.http_client.get_text(source_url)
        await self.cache.set(raw_key, document, ex=self.ttl_seconds)
        logger.info(
            "Fetched '%s' (%d bytes), cached for %ds",
            source_url,
            len(document),
            self.ttl_seconds,
        )
        return RawDocument(document=document, is_fresh=True)
