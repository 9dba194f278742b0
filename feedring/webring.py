"""
Webring Generator
This script fetches Atom/RSS feeds concurrently, keeps a polite HTTP cache
between runs, and renders the most recent articles through a template.
"""

import concurrent.futures
import datetime
import logging
import sys
from typing import Iterable, List, Optional, Sequence

from feedring.config import (
    PROGRESS_LOGGER,
    Settings,
    parse_args,
    read_url_file,
    setup_logging,
)
from feedring.errors import FeedMissingError, FeedringError
from feedring.models import Article, FeedResult, FetchFailure, FetchReport
from feedring.parsers.rss import RSSParser
from feedring.services.cache import CacheStore, load_cache, save_cache
from feedring.services.fetcher import FeedFetcher
from feedring.services.render import TemplateRenderer

logger = logging.getLogger(__name__)
progress = logging.getLogger(PROGRESS_LOGGER)

MAX_WORKERS = 32


def get_feeds(
    urls: Iterable[str],
    store: CacheStore,
    fetcher: Optional[FeedFetcher] = None,
    max_workers: Optional[int] = None,
) -> FetchReport:
    """Fetches and parses feeds in parallel.

    Every URL is fetched exactly once. Failing feeds are recorded in the
    report and never stop the others.
    """
    unique_urls = list(dict.fromkeys(urls))
    report = FetchReport()
    if not unique_urls:
        return report

    fetcher = fetcher or FeedFetcher()
    total = len(unique_urls)
    workers = max_workers or min(total, MAX_WORKERS)
    logger.info("--- Fetching %d feeds ---", total)

    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_url = {
            executor.submit(fetcher.fetch, url, store): url for url in unique_urls
        }
        for done, future in enumerate(
            concurrent.futures.as_completed(future_to_url), start=1
        ):
            url = future_to_url[future]
            try:
                result = future.result()
            except FeedringError as e:
                progress.warning("[%d/%d] %s: %s", done, total, url, e)
                report.failures.append(FetchFailure(url, e))
                continue
            except Exception as exc:  # pylint: disable=broad-exception-caught
                progress.error("[%d/%d] %s generated an exception: %s", done, total, url, exc)
                report.failures.append(FetchFailure(url, FeedringError(str(exc))))
                continue

            progress.info(
                "[%d/%d] %s%s", done, total, url, " (cached)" if result.from_cache else ""
            )
            report.feeds.append(result)

    logger.info(
        "Fetched %d feeds, %d failed.", len(report.feeds), len(report.failures)
    )
    return report


def collect_urls(settings: Settings) -> List[str]:
    """URLs from the command line followed by those from the URL file."""
    urls = list(settings.urls)
    if settings.url_file:
        try:
            urls.extend(read_url_file(settings.url_file))
        except OSError as e:
            raise FeedringError(f"Failed to open file `{settings.url_file}`: {e}") from e
    return urls


def build_articles(
    feeds: Sequence[FeedResult],
    per_source: int,
    before: Optional[datetime.datetime] = None,
    parser: Optional[RSSParser] = None,
) -> List[Article]:
    """Grabs articles from all the feeds."""
    parser = parser or RSSParser()
    articles: List[Article] = []
    for result in feeds:
        try:
            articles.extend(
                parser.extract_articles(result.feed, result.url, per_source, before)
            )
        except FeedringError as e:
            logger.warning("Skipping feed %s: %s", result.url, e)
    return articles


def select_articles(articles: List[Article], limit: int) -> List[Article]:
    """Newest first, at most ``limit`` articles."""
    ordered = sorted(articles, key=lambda a: a["timestamp"], reverse=True)
    return ordered[:limit]


def run(settings: Settings) -> str:
    """Runs one webring generation and returns the rendered output."""
    renderer = TemplateRenderer(settings.template_file)
    renderer.load()

    urls = collect_urls(settings)
    if not urls:
        raise FeedMissingError()

    store = load_cache(settings.cache_file, settings.max_cache_age, settings.cache)
    report = get_feeds(urls, store)

    if settings.cache:
        save_cache(store, settings.cache_file)

    articles = build_articles(
        report.feeds, settings.per_source, settings.before_cutoff()
    )
    return renderer.render(select_articles(articles, settings.num_articles))


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main execution entry point."""
    settings = parse_args(argv)
    setup_logging(settings.verbosity)

    try:
        output = run(settings)
    except FeedringError as e:
        logger.error("Error: %s", e)
        return 1

    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
