from .aggregator import (
    BookmarkProvider,
    EngagementProvider,
    FeedAggregator,
    decode_cursor,
    dedupe_by_url,
    encode_cursor,
)
from .aws_helpers import get_ssm_param_value, load_secrets_from_ssm
from .cache import CacheStore, RedisCacheStore
from .constants import (
    AppConstants,
    CacheKeys,
    DocumentKind,
    EnvVars,
    LocalPaths,
    SSMParams,
)
from .entry_store import ProcessedEntryStore, merge_entries
from .errors import (
    FeedPipeError,
    InvalidCursorError,
    MetadataFetchError,
    SourceFetchError,
    StoreCorruptedError,
    UnauthorizedError,
)
from .feed_parser import (
    FeedItemNode,
    ParsedDocument,
    SitemapUrlNode,
    parse,
    parse_document,
    parse_published_date,
)
from .http_client import HttpClient
from .locks import CacheLock
from .logger import is_running_in_aws, logger
from .merger import IncrementalMerger
from .metadata import MetadataEnricher, MetaTagsResponse, RateLimiter
from .models import (
    EngagementCounts,
    EntryMeta,
    FeedEntry,
    FeedPage,
    SitemapEntry,
    SitemapPage,
    WarmReport,
    sort_entries,
)
from .raw_cache import RawCache, RawDocument
from .results import ErrorKind, Result
from .service import FeedService, build_service
from .source_keys import SourceKeys, normalize_source_id, normalize_url, resolve_keys
from .utils import measure_execution_time
from .warmer import CacheWarmer

__all__ = [
    "AppConstants",
    "BookmarkProvider",
    "CacheKeys",
    "CacheLock",
    "CacheStore",
    "CacheWarmer",
    "DocumentKind",
    "EngagementCounts",
    "EngagementProvider",
    "EntryMeta",
    "EnvVars",
    "ErrorKind",
    "FeedAggregator",
    "FeedEntry",
    "FeedItemNode",
    "FeedPage",
    "FeedPipeError",
    "FeedService",
    "HttpClient",
    "IncrementalMerger",
    "InvalidCursorError",
    "LocalPaths",
    "MetaTagsResponse",
    "MetadataEnricher",
    "MetadataFetchError",
    "ParsedDocument",
    "ProcessedEntryStore",
    "RateLimiter",
    "RawCache",
    "RawDocument",
    "RedisCacheStore",
    "Result",
    "SSMParams",
    "SitemapEntry",
    "SitemapPage",
    "SitemapUrlNode",
    "SourceFetchError",
    "SourceKeys",
    "StoreCorruptedError",
    "UnauthorizedError",
    "WarmReport",
    "build_service",
    "decode_cursor",
    "dedupe_by_url",
    "encode_cursor",
    "get_ssm_param_value",
    "is_running_in_aws",
    "load_secrets_from_ssm",
    "logger",
    "measure_execution_time",
    "merge_entries",
    "normalize_source_id",
    "normalize_url",
    "parse",
    "parse_document",
    "parse_published_date",
    "resolve_keys",
    "sort_entries",
]
