import argparse
import asyncio
import os
import sys
from urllib.parse import urlparse

from feedpipe.configs import Config, Secrets
from feedpipe.main import setup_aws_env, warm
from feedpipe.src import AppConstants, EnvVars, WarmReport, logger


def main(token: str | None, sources: list[str] | None, full: bool) -> WarmReport:
    config = Config.load()
    setup_aws_env(config)
    report = asyncio.run(
        warm(config, Secrets.from_env(), token, sources, full=full, show_progress=True)
    )
    logger.info(
        "Refreshed: %s | Skipped: %s | Failed: %s",
        report.refreshed,
        report.skipped,
        report.failed,
    )
    if not report.success:
        raise RuntimeError(f"{len(report.failed)} sources failed to refresh")
    return report


def validate_source_url(url: str) -> bool:
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="feedpipe: refresh cached sitemaps and feeds of known sources"
    )
    parser.add_argument(
        "--token",
        type=str,
        default=None,
        help=f"Cache warming token (defaults to ${EnvVars.CACHE_WARM_TOKEN.value})",
    )
    parser.add_argument(
        "--sources",
        type=str,
        nargs="+",
        default=None,
        help="Source URLs to refresh instead of the configured and registered ones",
    )
    parser.add_argument(
        "--full",
        action="store_true",
        help="Refetch every document and merge all entries, ignoring the high-water mark",
    )
    args = parser.parse_args()

    token = args.token or os.environ.get(EnvVars.CACHE_WARM_TOKEN.value)
    sources = None
    if args.sources and args.sources[0].lower() != AppConstants.NULL_STRING:
        sources = [url for url in args.sources if validate_source_url(url)]
        if len(sources) < len(args.sources):
            logger.warning(
                "Filtered out %d invalid source URLs", len(args.sources) - len(sources)
            )
        if not sources:
            logger.error("No valid source URLs provided")
            sys.exit(1)

    try:
        main(token, sources, args.full)
    except Exception as e:
        logger.error("Cache warm failed: %s", e)
        sys.exit(1)
