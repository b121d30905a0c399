import asyncio
import os
from typing import Any

import boto3

from feedpipe.configs import Config, Secrets
from feedpipe.src import (
    AppConstants,
    EnvVars,
    RedisCacheStore,
    SSMParams,
    UnauthorizedError,
    WarmReport,
    build_service,
    is_running_in_aws,
    load_secrets_from_ssm,
    logger,
)

SECRET_PARAMS: dict[EnvVars, SSMParams] = {
    EnvVars.CACHE_WARM_TOKEN: SSMParams.CACHE_WARM_TOKEN,
    EnvVars.META_TAGS_API_KEY: SSMParams.META_TAGS_API_KEY,
    EnvVars.REDIS_URL: SSMParams.REDIS_URL,
}


def handler(event: dict[str, Any], context: Any) -> dict[str, int | str]:
    config = Config.load()
    try:
        setup_aws_env(config)
        token = event.get("token")
        sources = parse_sources(event.get("sources"))
        full = event.get("full", True) is not False
        report = asyncio.run(warm(config, Secrets.from_env(), token, sources, full=full))
        body = report.model_dump_json()
        logger.info("Cache warm finished: %s", body)
        return {"statusCode": 200, "body": body}
    except UnauthorizedError as e:
        logger.warning("Rejected cache warm request: %s", e)
        return {"statusCode": 401, "body": "Unauthorized"}
    except Exception as e:
        logger.error("An error occurred: %s", e, exc_info=True)
        return {"statusCode": 500, "body": f"An error occurred: {e}"}


def setup_aws_env(config: Config) -> None:
    if not is_running_in_aws():
        return
    boto_session = boto3.Session(
        region_name=os.environ.get(EnvVars.DEFAULT_REGION_NAME.value)
        or config.resources.default_region_name
    )
    try:
        load_secrets_from_ssm(boto_session, config.ssm_base_path, SECRET_PARAMS)
    except Exception as e:
        logger.error("Failed to load secrets from SSM: %s", e)


def parse_sources(sources: Any) -> list[str] | None:
    if not sources or sources == AppConstants.NULL_STRING:
        return None
    if isinstance(sources, str):
        sources = sources.split(",")
    return [source.strip() for source in sources if source and source.strip()]


async def warm(
    config: Config,
    secrets: Secrets,
    token: str | None,
    sources: list[str] | None,
    full: bool = True,
    show_progress: bool = False,
) -> WarmReport:
    service = build_service(config, secrets, show_progress=show_progress)
    try:
        return await service.warm_cache(token, sources, full=full)
    finally:
        if isinstance(service.cache, RedisCacheStore):
            await service.cache.close()

