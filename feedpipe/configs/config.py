import os
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from feedpipe.src import EnvVars


class BaseModelWithDefaults(BaseModel):
    @model_validator(mode="before")
    def set_defaults_for_none_fields(cls, values: dict[str, Any]) -> dict[str, Any]:
        if not isinstance(values, dict):
            return values
        for field_name, field in cls.model_fields.items():
            if values.get(field_name) is None and field.default is not None:
                values[field_name] = field.default
        return values


class Resources(BaseModelWithDefaults):
    project_name: str = Field(default="feedpipe", min_length=1)
    stage: Literal["dev", "prod"] = Field(default="dev")
    profile_name: str | None = Field(default=None)
    default_region_name: str = Field(default="ap-northeast-2")


class Cache(BaseModelWithDefaults):
    redis_url: str = Field(default="redis://localhost:6379/0")
    raw_ttl_seconds: int = Field(default=86400, ge=1)
    rebuild_lock_ttl_seconds: int = Field(default=300, ge=1)
    write_lock_ttl_seconds: int = Field(default=30, ge=1)
    write_lock_wait_seconds: float = Field(default=5.0, ge=0.0)


class Metadata(BaseModelWithDefaults):
    api_url: str = Field(default="https://api.apilayer.com/meta_tags", min_length=1)
    timeout_seconds: float = Field(default=10.0, gt=0.0)
    min_interval_seconds: float = Field(default=0.2, ge=0.0)
    max_concurrency: int = Field(default=5, ge=1)
    batch_size: int = Field(default=10, ge=1)


class Aggregation(BaseModelWithDefaults):
    source_batch_size: int = Field(default=3, ge=1)
    batch_delay_seconds: float = Field(default=0.5, ge=0.0)
    feed_page_size: int = Field(default=20, ge=1)


class Sitemap(BaseModelWithDefaults):
    items_per_page: int = Field(default=10, ge=1)
    max_child_sitemaps: int = Field(default=5, ge=0)
    request_timeout_seconds: int = Field(default=30, ge=1)


class Warming(BaseModelWithDefaults):
    source_urls: list[str] = Field(default_factory=list)
    include_registered_sources: bool = Field(default=True)


class Secrets(BaseModel):
    redis_url: str | None = None
    meta_tags_api_key: str | None = None
    cache_warm_token: str | None = None

    @classmethod
    def from_env(cls) -> "Secrets":
        return cls(
            redis_url=os.environ.get(EnvVars.REDIS_URL.value) or None,
            meta_tags_api_key=os.environ.get(EnvVars.META_TAGS_API_KEY.value) or None,
            cache_warm_token=os.environ.get(EnvVars.CACHE_WARM_TOKEN.value) or None,
        )


class Config(BaseModelWithDefaults):
    resources: Resources = Field(default_factory=Resources)
    cache: Cache = Field(default_factory=Cache)
    metadata: Metadata = Field(default_factory=Metadata)
    aggregation: Aggregation = Field(default_factory=Aggregation)
    sitemap: Sitemap = Field(default_factory=Sitemap)
    warming: Warming = Field(default_factory=Warming)

    @property
    def ssm_base_path(self) -> str:
        return f"/{self.resources.project_name}/{self.resources.stage}"

    @classmethod
    def from_yaml(cls, file_path: str) -> "Config":
        with open(file_path, encoding="utf-8") as file:
            config_data = yaml.safe_load(file) or {}
        return cls(**config_data)

    @classmethod
    def load(cls) -> "Config":
        load_dotenv()
        config_suffix = os.environ.get(EnvVars.CONFIG_FILE_SUFFIX.value, "dev")
        filename, extension = "config", "yaml"
        suffix = f"-{config_suffix}" if config_suffix else ""
        config_file = (
            Path(filename).with_name(f"{filename}{suffix}").with_suffix(f".{extension}")
        )
        config_path = Path(__file__).parent / config_file
        return cls.from_yaml(str(config_path))
