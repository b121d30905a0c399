import xml.etree.ElementTree as ET
from calendar import timegm
from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Literal

import feedparser
from bs4 import BeautifulSoup
from feedparser.exceptions import CharacterEncodingOverride
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from .constants import DocumentKind
from .logger import logger
from .models import EntryMeta, SitemapEntry
from .results import ErrorKind, Result
from .utils import parse_published_date

__all__ = [
    "FeedItemNode",
    "ParsedDocument",
    "SitemapUrlNode",
    "parse",
    "parse_document",
    "parse_published_date",
]


class ParserConfig:
    SITEMAP_ROOTS: ClassVar[set[str]] = {"urlset"}
    SITEMAP_INDEX_ROOTS: ClassVar[set[str]] = {"sitemapindex"}
    FEED_ROOTS: ClassVar[set[str]] = {"rss", "feed", "RDF"}
    MAX_DESCRIPTION_LENGTH: ClassVar[int] = 1000


class SitemapUrlNode(BaseModel):
    kind: Literal["sitemap"] = "sitemap"
    loc: str = Field(min_length=1)
    lastmod: datetime

    @field_validator("loc", mode="before")
    @classmethod
    def validate_loc(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("lastmod", mode="before")
    @classmethod
    def validate_lastmod(cls, v: Any) -> datetime:
        return parse_published_date(v)

    def to_entry(self) -> SitemapEntry:
        return SitemapEntry(url=self.loc, lastmod=self.lastmod)


class FeedItemNode(BaseModel):
    kind: Literal["feed"] = "feed"
    link: str = Field(min_length=1)
    title: str = ""
    summary: str = ""
    image: str | None = None
    updated: datetime

    @field_validator("link", mode="before")
    @classmethod
    def validate_link(cls, v: Any) -> Any:
        if isinstance(v, dict):
            v = v.get("href", "")
        elif isinstance(v, list):
            hrefs = [
                link.get("href", "")
                for link in v
                if isinstance(link, dict) and link.get("rel", "alternate") == "alternate"
            ]
            v = hrefs[0] if hrefs else ""
        return v.strip() if isinstance(v, str) else v

    @field_validator("updated", mode="before")
    @classmethod
    def validate_updated(cls, v: Any) -> datetime:
        return parse_published_date(v)

    def to_entry(self) -> SitemapEntry:
        return SitemapEntry(
            url=self.link,
            lastmod=self.updated,
            meta=EntryMeta(title=self.title, description=self.summary, image=self.image),
        )


IngestedNode = Annotated[SitemapUrlNode | FeedItemNode, Field(discriminator="kind")]
_NODE_ADAPTER: TypeAdapter = TypeAdapter(IngestedNode)


class ParsedDocument(BaseModel):
    kind: DocumentKind
    entries: list[SitemapEntry] = Field(default_factory=list)
    child_sitemaps: list[str] = Field(default_factory=list)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _child_text(element: ET.Element, name: str) -> str | None:
    for child in element:
        if _local_name(child.tag) == name and child.text:
            return child.text.strip()
    return None


def _validate_nodes(raw_nodes: list[dict[str, Any]]) -> list[SitemapEntry]:
    entries: list[SitemapEntry] = []
    seen_urls: set[str] = set()
    for raw_node in raw_nodes:
        try:
            node = _NODE_ADAPTER.validate_python(raw_node)
        except ValidationError as e:
            logger.debug("Skipping invalid %s node: %s", raw_node.get("kind"), e)
            continue
        entry = node.to_entry()
        if entry.url in seen_urls:
            continue
        seen_urls.add(entry.url)
        entries.append(entry)
    return entries


def _parse_sitemap(root: ET.Element) -> list[SitemapEntry]:
    raw_nodes = [
        {
            "kind": "sitemap",
            "loc": _child_text(element, "loc"),
            "lastmod": _child_text(element, "lastmod"),
        }
        for element in root
        if _local_name(element.tag) == "url"
    ]
    return _validate_nodes(raw_nodes)


def _parse_sitemap_index(root: ET.Element) -> list[str]:
    locations = []
    for element in root:
        if _local_name(element.tag) != "sitemap":
            continue
        if loc := _child_text(element, "loc"):
            locations.append(loc)
    return locations


def _html_to_text(html: str) -> str:
    if not html:
        return ""
    if "<" not in html:
        return html.strip()
    text = BeautifulSoup(html, "html.parser").get_text(" ", strip=True)
    return text[: ParserConfig.MAX_DESCRIPTION_LENGTH]


def _extract_image(entry: feedparser.FeedParserDict) -> str | None:
    for media_key in ("media_thumbnail", "media_content"):
        for media in entry.get(media_key, []) or []:
            if isinstance(media, dict) and media.get("url"):
                return media["url"]
    html_candidates = [
        item.get("value", "") for item in entry.get("content", []) or []
    ]
    html_candidates.append(entry.get("summary", ""))
    for html in html_candidates:
        if not html or "<img" not in html:
            continue
        img = BeautifulSoup(html, "html.parser").find("img")
        if img is not None and img.get("src"):
            return str(img["src"])
    return None


def _entry_timestamp(entry: feedparser.FeedParserDict) -> datetime | str | None:
    for parsed_key in ("updated_parsed", "published_parsed"):
        if parsed := entry.get(parsed_key):
            return datetime.fromtimestamp(timegm(parsed), tz=timezone.utc)
    return entry.get("updated") or entry.get("published")


def _parse_feed(document_text: str) -> Result[list[SitemapEntry]]:
    feed = feedparser.parse(document_text)
    if feed.bozo:
        bozo_exc = feed.get("bozo_exception")
        if not isinstance(bozo_exc, CharacterEncodingOverride):
            logger.error("Error parsing feed document: %s", bozo_exc)
            return Result.failure([], ErrorKind.PARSE, str(bozo_exc))
        logger.warning("Feed document encoding override: %s", bozo_exc)

    raw_nodes = [
        {
            "kind": "feed",
            "link": entry.get("link") or entry.get("links") or "",
            "title": entry.get("title", ""),
            "summary": _html_to_text(entry.get("summary") or entry.get("description", "")),
            "image": _extract_image(entry),
            "updated": _entry_timestamp(entry),
        }
        for entry in feed.entries
    ]
    return Result.success(_validate_nodes(raw_nodes))


def parse_document(document_text: str) -> Result[ParsedDocument]:
    """Parse a sitemap, sitemap index, RSS or Atom document.

    Never raises. Malformed input yields an empty document with a ``PARSE``
    error; an unrecognized root yields an empty ``UNKNOWN`` document.
    """
    empty = ParsedDocument(kind=DocumentKind.UNKNOWN)
    if not isinstance(document_text, str) or not document_text.strip():
        return Result.failure(empty, ErrorKind.PARSE, "empty document")
    try:
        root = ET.fromstring(document_text.lstrip("\ufeff").strip())
    except ET.ParseError as e:
        logger.error("XML processing failed: %s", e)
        return Result.failure(empty, ErrorKind.PARSE, str(e))

    root_name = _local_name(root.tag)
    try:
        if root_name in ParserConfig.SITEMAP_ROOTS:
            entries = _parse_sitemap(root)
            logger.debug("Parsed sitemap with %d entries", len(entries))
            return Result.success(ParsedDocument(kind=DocumentKind.SITEMAP, entries=entries))
        if root_name in ParserConfig.SITEMAP_INDEX_ROOTS:
            children = _parse_sitemap_index(root)
            logger.debug("Parsed sitemap index with %d child sitemaps", len(children))
            return Result.success(
                ParsedDocument(kind=DocumentKind.SITEMAP_INDEX, child_sitemaps=children)
            )
        if root_name in ParserConfig.FEED_ROOTS:
            feed_result = _parse_feed(document_text)
            document = ParsedDocument(kind=DocumentKind.FEED, entries=feed_result.value)
            if not feed_result.ok:
                return Result.failure(document, ErrorKind.PARSE, feed_result.detail)
            logger.debug("Parsed feed with %d entries", len(document.entries))
            return Result.success(document)
    except Exception as e:
        logger.error("Failed to process '%s' document: %s", root_name, e)
        return Result.failure(empty, ErrorKind.PARSE, str(e))

    logger.warning("Unrecognized document root '%s'", root_name)
    return Result.success(empty)


def parse(document_text: str) -> list[SitemapEntry]:
    return parse_document(document_text).value.entries
