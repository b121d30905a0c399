import asyncio
import functools
import time
from collections.abc import Callable, Iterator, Sequence
from datetime import datetime, timezone
from typing import Any, TypeVar

import tenacity

from .logger import logger

MAX_RETRIES: int = 3
RETRY_MAX_WAIT: int = 30
RETRY_MULTIPLIER: int = 2

EPOCH: datetime = datetime(1970, 1, 1, tzinfo=timezone.utc)

DATE_FORMATS: tuple[str, ...] = (
    "%a, %d %b %Y %H:%M:%S GMT",
    "%a, %d %b %Y %H:%M:%S %z",
    "%a, %d %b %Y %H:%M:%S %Z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%d %H:%M:%S",
    "%b %d, %Y",
    "%B %d, %Y",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d.%m.%Y",
)

ItemT = TypeVar("ItemT")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_published_date(date_str: Any) -> datetime:
    if isinstance(date_str, datetime):
        return ensure_utc(date_str)
    if not isinstance(date_str, str) or not date_str.strip():
        return utc_now()
    date_str = date_str.strip()
    try:
        return ensure_utc(datetime.fromisoformat(date_str.replace("Z", "+00:00")))
    except (ValueError, TypeError):
        pass
    for fmt in DATE_FORMATS:
        try:
            return ensure_utc(datetime.strptime(date_str, fmt))
        except (ValueError, TypeError):
            continue
    logger.warning("Failed to parse date '%s' with any known format.", date_str)
    return utc_now()


def chunked(items: Sequence[ItemT], size: int) -> Iterator[list[ItemT]]:
    if size < 1:
        raise ValueError("Chunk size must be at least 1")
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


class RetryableBase:
    @staticmethod
    def _retry(operation_name: str, retry_on: type[BaseException] = Exception) -> Callable:
        return tenacity.retry(
            retry=tenacity.retry_if_exception_type(retry_on),
            wait=tenacity.wait_exponential(
                multiplier=RETRY_MULTIPLIER, max=RETRY_MAX_WAIT
            ),
            stop=tenacity.stop_after_attempt(MAX_RETRIES),
            before_sleep=lambda retry_state: logger.warning(
                "Retrying '%s' (attempt %d failed). Waiting %.1fs",
                operation_name,
                retry_state.attempt_number,
                retry_state.next_action.sleep if retry_state.next_action else 0,
            ),
            reraise=True,
        )


def measure_execution_time(func: Callable) -> Callable:
    @functools.wraps(func)
    async def async_wrapper(*args, **kwargs):
        start_time = time.time()
        result = await func(*args, **kwargs)
        execution_time = time.time() - start_time
        logger.info(
            "'%s' execution time: %.2fs (%.2fmin)",
            func.__name__,
            execution_time,
            execution_time / 60,
        )
        return result

    @functools.wraps(func)
    def sync_wrapper(*args, **kwargs):
        start_time = time.time()
        result = func(*args, **kwargs)
        execution_time = time.time() - start_time
        logger.info(
            "'%s' execution time: %.2fs (%.2fmin)",
            func.__name__,
            execution_time,
            execution_time / 60,
        )
        return result

    if asyncio.iscoroutinefunction(func):
        return async_wrapper
    else:
        return sync_wrapper
