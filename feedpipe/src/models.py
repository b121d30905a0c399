from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import parse_published_date


class EntryMeta(BaseModel):
    title: str = ""
    description: str = ""
    image: str | None = None

    @field_validator("title", "description", mode="before")
    @classmethod
    def validate_text(cls, v: Any) -> str:
        return v.strip() if isinstance(v, str) else ""

    @field_validator("image", mode="before")
    @classmethod
    def validate_image(cls, v: Any) -> str | None:
        if isinstance(v, str) and v.strip():
            return v.strip()
        return None

    @property
    def is_empty(self) -> bool:
        return not (self.title or self.description or self.image)


class SitemapEntry(BaseModel):
    """One content item of a source, as stored in its processed store."""

    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(min_length=1)
    lastmod: datetime
    meta: EntryMeta = Field(default_factory=EntryMeta)
    source_key: str = Field(default="", alias="sourceKey")

    @field_validator("lastmod", mode="before")
    @classmethod
    def validate_lastmod(cls, v: Any) -> datetime:
        return parse_published_date(v)

    @field_validator("meta", mode="before")
    @classmethod
    def validate_meta(cls, v: Any) -> Any:
        return v if v is not None else EntryMeta()

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class EngagementCounts(BaseModel):
    comment_count: int = Field(default=0, ge=0)
    like_count: int = Field(default=0, ge=0)
    is_liked: bool = False


class FeedEntry(SitemapEntry):
    comment_count: int = Field(default=0, alias="commentCount")
    like_count: int = Field(default=0, alias="likeCount")
    is_liked: bool = Field(default=False, alias="isLiked")

    @classmethod
    def from_entry(
        cls, entry: SitemapEntry, counts: EngagementCounts | None = None
    ) -> "FeedEntry":
        counts = counts or EngagementCounts()
        return cls(
            url=entry.url,
            lastmod=entry.lastmod,
            meta=entry.meta,
            source_key=entry.source_key,
            comment_count=counts.comment_count,
            like_count=counts.like_count,
            is_liked=counts.is_liked,
        )


class FeedPage(BaseModel):
    entries: list[FeedEntry] = Field(default_factory=list)
    has_more: bool = False
    next_cursor: str | None = None
    total: int = 0


class SitemapPage(BaseModel):
    entries: list[SitemapEntry] = Field(default_factory=list)
    has_more: bool = False
    total: int = 0
    current_page: int = 1
    page_size: int = 10


class WarmReport(BaseModel):
    refreshed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


def sort_entries(entries: Iterable[SitemapEntry]) -> list[SitemapEntry]:
    """Newest first. The sort is stable, so equal timestamps keep their input order."""
    return sorted(entries, key=lambda e: e.lastmod, reverse=True)
