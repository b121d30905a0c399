import asyncio
import gzip
from typing import Any, ClassVar
from urllib.parse import urlparse

import requests
from requests.exceptions import RequestException

from .errors import SourceFetchError
from .logger import logger


class HttpConfig:
    REQUEST_HEADERS_OPTIONS: ClassVar[list[dict[str, str]]] = [
        {
            "User-Agent": "Mozilla/5.0 (compatible; feedpipe/1.0; +sitemap reader)",
            "Accept": "application/xml, application/rss+xml, application/atom+xml, text/xml;q=0.9, */*;q=0.8",
            "Accept-Encoding": "gzip, deflate",
        },
        {
            "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Accept-Encoding": "gzip, deflate",
        },
        {
            "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            "Accept": "*/*",
            "Accept-Encoding": "gzip, deflate",
        },
    ]
    REQUEST_TIMEOUT: ClassVar[int] = 30
    GZIP_MAGIC: ClassVar[bytes] = b"\x1f\x8b"


class HeaderCache:
    """Remembers which header set an origin accepted last time."""

    def __init__(self):
        self._cache: dict[str, int] = {}

    def get_cached_header_index(self, domain: str) -> int | None:
        return self._cache.get(domain)

    def cache_header_index(self, domain: str, index: int) -> None:
        self._cache[domain] = index


class HttpClient:
    def __init__(self, timeout: int = HttpConfig.REQUEST_TIMEOUT):
        self.timeout = timeout
        self.header_cache = HeaderCache()

    def _header_order(self, domain: str) -> list[int]:
        indices = list(range(len(HttpConfig.REQUEST_HEADERS_OPTIONS)))
        cached_index = self.header_cache.get_cached_header_index(domain)
        if cached_index is not None:
            indices.remove(cached_index)
            indices.insert(0, cached_index)
        return indices

    def _robust_get(self, url: str) -> requests.Response:
        domain = urlparse(url).netloc.lower()
        last_error = "no request attempted"
        with requests.Session() as session:
            for i in self._header_order(domain):
                try:
                    response = session.get(
                        url,
                        headers=HttpConfig.REQUEST_HEADERS_OPTIONS[i],
                        timeout=self.timeout,
                        allow_redirects=True,
                    )
                    response.raise_for_status()
                    self.header_cache.cache_header_index(domain, i)
                    logger.debug("Fetched '%s' with headers set %d", url, i + 1)
                    return response
                except RequestException as e:
                    last_error = str(e)
                    logger.warning("Headers set %d failed for '%s': %s", i + 1, url, e)
        logger.error("All header attempts failed for '%s'", url)
        raise SourceFetchError(url, last_error)

    @staticmethod
    def _decode_body(response: requests.Response) -> str:
        content = response.content
        if content[:2] == HttpConfig.GZIP_MAGIC:
            try:
                return gzip.decompress(content).decode("utf-8", errors="replace")
            except OSError as e:
                logger.warning("Failed to decompress gzipped body: %s", e)
        return response.text

    async def get_text(self, url: str) -> str:
        response = await asyncio.to_thread(self._robust_get, url)
        return self._decode_body(response)

    def _get_json(
        self,
        url: str,
        params: dict[str, str] | None,
        headers: dict[str, str] | None,
        timeout: float,
    ) -> Any:
        response = requests.get(url, params=params, headers=headers, timeout=timeout)
        response.raise_for_status()
        return response.json()

    async def get_json(
        self,
        url: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> Any:
        return await asyncio.to_thread(self._get_json, url, params, headers, timeout)
