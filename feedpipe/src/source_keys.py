"""Stable cache namespaces for sources.

A source URL is reduced to a short identifier so that cosmetic variations of
the same origin (protocol, ``www.``, the ``.com`` or hosting-provider suffix,
the trailing sitemap/feed file) address the same raw and processed caches.
"""

import re
from typing import ClassVar
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel

from .constants import CacheKeys
from .logger import logger


class SourceKeys(BaseModel):
    source_id: str
    raw_key: str
    processed_key: str


class SourceKeyConfig:
    # Longest first so that "foo.substack.com" loses ".substack.com" rather than ".com".
    PROVIDER_SUFFIXES: ClassVar[tuple[str, ...]] = (
        ".substack.com",
        ".beehiiv.com",
        ".wordpress.com",
        ".medium.com",
        ".ghost.io",
        ".com",
    )
    SITEMAP_SEGMENT_PATTERN: ClassVar[re.Pattern] = re.compile(
        r"^(sitemap[\w-]*\.xml(\.gz)?|sitemap|feed(\.xml)?|rss(\.xml)?|atom(\.xml)?|index\.xml)$",
        re.IGNORECASE,
    )
    SCHEME_PATTERN: ClassVar[re.Pattern] = re.compile(r"^[a-z][a-z0-9+.-]*://")


def _fallback_id(source_url: str) -> str:
    return source_url.strip().lower()


def _strip_provider_suffix(host: str) -> str:
    for suffix in SourceKeyConfig.PROVIDER_SUFFIXES:
        if host.endswith(suffix) and len(host) > len(suffix):
            return host[: -len(suffix)]
    return host


def normalize_source_id(source_url: str) -> str:
    if not isinstance(source_url, str):
        return ""
    candidate = source_url.strip().lower()
    if not candidate:
        return ""
    try:
        without_scheme = SourceKeyConfig.SCHEME_PATTERN.sub("", candidate)
        parts = urlsplit(f"//{without_scheme}")
        host = parts.hostname or ""
        if not host:
            return _fallback_id(source_url)
        if host.startswith("www."):
            host = host[len("www.") :]
        host = _strip_provider_suffix(host)

        segments = [segment for segment in parts.path.split("/") if segment]
        if segments and SourceKeyConfig.SITEMAP_SEGMENT_PATTERN.match(segments[-1]):
            segments.pop()
        return "/".join([host, *segments])
    except ValueError as e:
        logger.warning("Could not normalize source URL '%s': %s", source_url, e)
        return _fallback_id(source_url)


def resolve_keys(source_url: str) -> SourceKeys:
    source_id = normalize_source_id(source_url)
    return SourceKeys(
        source_id=source_id,
        raw_key=CacheKeys.raw(source_id),
        processed_key=CacheKeys.processed(source_id),
    )


def normalize_url(url: str) -> str:
    """Canonical form of an entry URL used to join engagement counts and dedupe."""
    try:
        parts = urlsplit(url.strip())
        if not parts.scheme or not parts.netloc:
            return url
        path = parts.path[:-1] if parts.path.endswith("/") else parts.path
        return urlunsplit(
            (parts.scheme.lower(), parts.netloc.lower(), path, parts.query, "")
        )
    except (ValueError, AttributeError):
        return url
