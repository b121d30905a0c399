import asyncio
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from requests.exceptions import RequestException

from .cache import CacheStore
from .constants import AppConstants, CacheKeys
from .errors import MetadataFetchError
from .http_client import HttpClient
from .logger import logger
from .models import EntryMeta
from .results import ErrorKind, Result


class RateLimiter:
    """Bounds calls to an external API.

    At most ``max_concurrency`` holders at a time, and consecutive acquisitions
    are spaced at least ``min_interval`` seconds apart.
    """

    def __init__(self, min_interval: float = 0.2, max_concurrency: int = 5):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.min_interval = max(min_interval, 0.0)
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._spacing_lock = asyncio.Lock()
        self._next_start = 0.0

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        try:
            async with self._spacing_lock:
                loop = asyncio.get_running_loop()
                delay = self._next_start - loop.time()
                if delay > 0:
                    await asyncio.sleep(delay)
                self._next_start = loop.time() + self.min_interval
        except BaseException:
            self._semaphore.release()
            raise

    def release(self) -> None:
        self._semaphore.release()

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


class ApiMetaTag(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    prop: str | None = Field(default=None, alias="property")
    content: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def validate_content(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""


class MetaTagsResponse(BaseModel):
    title: str = ""
    meta_tags: list[ApiMetaTag] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def validate_title(cls, v: Any) -> str:
        return v if isinstance(v, str) else ""

    @field_validator("meta_tags", mode="before")
    @classmethod
    def validate_meta_tags(cls, v: Any) -> list:
        return v if isinstance(v, list) else []

    def _find(self, name: str | None = None, prop: str | None = None) -> str:
        for tag in self.meta_tags:
            if name is not None and tag.name == name and tag.content:
                return tag.content
            if prop is not None and tag.prop == prop and tag.content:
                return tag.content
        return ""

    def to_meta(self) -> EntryMeta:
        return EntryMeta(
            title=self.title,
            description=self._find(prop="og:description") or self._find(name="description"),
            image=self._find(prop="og:image") or None,
        )


class MetadataEnricher:
    def __init__(
        self,
        cache: CacheStore,
        http_client: HttpClient,
        rate_limiter: RateLimiter,
        api_key: str | None,
        api_url: str = AppConstants.External.META_TAGS_API.value,
        timeout: float = 10.0,
    ):
        self.cache = cache
        self.http_client = http_client
        self.rate_limiter = rate_limiter
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        if not api_key:
            logger.warning("No metadata API key configured; entries will carry empty metadata")

    @staticmethod
    def _cache_key(url: str) -> str:
        return f"{CacheKeys.META_TAGS_PREFIX}{url}"

    @staticmethod
    def _decode_cached(raw: str | None) -> EntryMeta | None:
        if raw is None:
            return None
        try:
            return EntryMeta.model_validate_json(raw)
        except ValidationError:
            return None

    async def _request(self, url: str) -> Any:
        if not self.api_key:
            raise MetadataFetchError(url, "metadata API key is not configured")
        async with self.rate_limiter:
            return await asyncio.wait_for(
                self.http_client.get_json(
                    self.api_url,
                    params={"url": url},
                    headers={"apikey": self.api_key},
                    timeout=self.timeout,
                ),
                timeout=self.timeout,
            )

    async def _fetch_one(self, url: str) -> Result[EntryMeta]:
        try:
            payload = await self._request(url)
            return Result.success(MetaTagsResponse.model_validate(payload).to_meta())
        except asyncio.TimeoutError:
            logger.warning("Meta tags request timed out after %.1fs for '%s'", self.timeout, url)
            return Result.failure(EntryMeta(), ErrorKind.TRANSIENT_IO, "timeout")
        except (RequestException, MetadataFetchError) as e:
            logger.error("Failed to fetch meta tags for '%s': %s", url, e)
            return Result.failure(EntryMeta(), ErrorKind.TRANSIENT_IO, str(e))
        except (ValidationError, ValueError) as e:
            logger.error("Unexpected meta tags response for '%s': %s", url, e)
            return Result.failure(EntryMeta(), ErrorKind.PARSE, str(e))

    async def enrich_batch(self, urls: list[str]) -> dict[str, EntryMeta]:
        """Metadata for every URL of the batch.

        Cached metadata is reused forever. URLs whose fetch fails map to an
        empty ``EntryMeta`` and are not cached, so a later batch retries them.
        Only a failure of the batch as a whole (for instance the cache being
        unreachable) returns an empty mapping.
        """
        unique_urls = list(dict.fromkeys(url for url in urls if url))
        if not unique_urls:
            return {}
        try:
            cached_values = await self.cache.mget([self._cache_key(url) for url in unique_urls])
            results: dict[str, EntryMeta] = {}
            to_fetch: list[str] = []
            for url, raw in zip(unique_urls, cached_values):
                if (meta := self._decode_cached(raw)) is not None:
                    results[url] = meta
                else:
                    to_fetch.append(url)
            logger.debug(
                "Meta tags cache: %d hits, %d to fetch", len(results), len(to_fetch)
            )

            fetched = await asyncio.gather(*(self._fetch_one(url) for url in to_fetch))
            succeeded = []
            for url, result in zip(to_fetch, fetched):
                results[url] = result.value
                if result.ok:
                    succeeded.append(url)
            await asyncio.gather(
                *(
                    self.cache.set(self._cache_key(url), results[url].model_dump_json())
                    for url in succeeded
                )
            )
            if len(succeeded) < len(to_fetch):
                logger.warning(
                    "Meta tags batch partially failed: %d/%d fetched",
                    len(succeeded),
                    len(to_fetch),
                )
            return results
        except Exception as e:
            logger.error("Failed to fetch meta tags batch: %s", e)
            return {}
