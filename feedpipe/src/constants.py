import hashlib
from enum import Enum, auto


class AutoNamedEnum(str, Enum):
    @staticmethod
    def _generate_next_value_(
        name: str, start: int, count: int, last_values: list[str]
    ) -> str:
        return name.lower()


class EnvVars(str, Enum):
    CACHE_WARM_TOKEN = "CACHE_WARM_TOKEN"
    CONFIG_FILE_SUFFIX = "CONFIG_FILE_SUFFIX"
    DEFAULT_REGION_NAME = "DEFAULT_REGION_NAME"
    FILE_LOGGING = "FEEDPIPE_FILE_LOGGING"
    LOG_LEVEL = "LOG_LEVEL"
    META_TAGS_API_KEY = "META_TAGS_API_KEY"
    REDIS_URL = "REDIS_URL"


class DocumentKind(AutoNamedEnum):
    SITEMAP = auto()
    SITEMAP_INDEX = auto()
    FEED = auto()
    UNKNOWN = auto()


class LocalPaths(str, Enum):
    LOGS_DIR = "logs"
    LOGS_FILE = "logs.txt"


class SSMParams(str, Enum):
    CACHE_WARM_TOKEN = "cache-warm-token"
    META_TAGS_API_KEY = "meta-tags-api-key"
    REDIS_URL = "redis-url"


class CacheKeys:
    META_TAGS_PREFIX: str = "meta-tags:"
    REBUILD_LOCK_PREFIX: str = "lock:rebuild:"
    SOURCE_REGISTRY: str = "sitemap:sources"
    WRITE_LOCK_PREFIX: str = "lock:write:"

    @staticmethod
    def raw(source_id: str) -> str:
        return f"sitemap.{source_id}.raw"

    @staticmethod
    def processed(source_id: str) -> str:
        return f"sitemap.{source_id}.processed"

    @staticmethod
    def raw_child(source_id: str, child_url: str) -> str:
        digest = hashlib.sha256(child_url.encode()).hexdigest()[:16]
        return f"sitemap.{source_id}.raw.{digest}"


class AppConstants:
    NULL_STRING: str = "null"

    class External(str, Enum):
        META_TAGS_API = "https://api.apilayer.com/meta_tags"
