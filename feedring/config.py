"""Command line and environment configuration for feedring."""

import argparse
import datetime
import logging
import os
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from urllib.parse import urlparse

from feedring.errors import FeedUrlError

VERSION = "0.1.0"

DEFAULT_CACHE_FILE = ".feedringcache"
PROGRESS_LOGGER = "feedring.progress"
DEFAULT_MAX_CACHE_AGE = "14d"

_DURATION_UNITS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
}
_DURATION_RE = re.compile(r"(\d+)\s*([smhdw])")


def parse_duration(value: str) -> datetime.timedelta:
    """Parse a duration such as "14d", "90m" or "1d12h".

    A bare integer is read as seconds.

    Example:
        >>> parse_duration("1d12h")
        datetime.timedelta(days=1, seconds=43200)
    """
    text = value.strip().lower()
    if text.isdigit():
        return datetime.timedelta(seconds=int(text))

    compact = text.replace(" ", "")
    parts = _DURATION_RE.findall(compact)
    if not parts or "".join(n + u for n, u in parts) != compact:
        raise ValueError(f"invalid duration: {value!r}")
    seconds = sum(int(n) * _DURATION_UNITS[u] for n, u in parts)
    return datetime.timedelta(seconds=seconds)


def validate_url(url: str) -> str:
    """Returns the URL unchanged if it is an absolute http(s) URL."""
    parts = urlparse(url.strip())
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise FeedUrlError(url, "expected an absolute http(s) URL")
    return url.strip()


def read_url_file(path: str) -> List[str]:
    """Read feed URLs from a file, one per line.

    Blank lines and lines starting with '#' or "//" are ignored.
    """
    urls = []
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith(("#", "//")):
                continue
            try:
                urls.append(validate_url(stripped))
            except FeedUrlError as e:
                raise FeedUrlError(stripped, e.reason, source=path, line=lineno) from e
    return urls


def _url_arg(value: str) -> str:
    try:
        return validate_url(value)
    except FeedUrlError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _duration_arg(value: str) -> datetime.timedelta:
    try:
        return parse_duration(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _date_arg(value: str) -> datetime.date:
    try:
        return datetime.date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from e


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError("expected an integer") from e
    if number < 0:
        raise argparse.ArgumentTypeError("must not be negative")
    return number


@dataclass
class Settings:
    """Settings for a single feedring run."""

    template_file: str
    urls: List[str] = field(default_factory=list)
    url_file: Optional[str] = None
    num_articles: int = 3
    per_source: int = 1
    before: Optional[datetime.date] = None
    cache: bool = False
    cache_file: str = DEFAULT_CACHE_FILE
    max_cache_age: datetime.timedelta = datetime.timedelta(days=14)
    verbosity: int = 0

    def before_cutoff(self) -> Optional[datetime.datetime]:
        """Local midnight of ``before``, as an aware datetime."""
        if self.before is None:
            return None
        midnight = datetime.datetime.combine(self.before, datetime.time())
        return midnight.astimezone()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feedring",
        description="Generate a webring of recent articles from Atom/RSS feeds.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument(
        "-n", "--num-articles", type=_non_negative_int, default=3,
        help="Total number of articles to fetch",
    )
    parser.add_argument(
        "-p", "--per-source", type=_non_negative_int, default=1,
        help="Number of most recent articles to get from each feed",
    )
    parser.add_argument(
        "-S", "--url-file", metavar="FILE",
        help="File with URLs of Atom/RSS feeds to read (one URL per line, "
        "lines starting with '#' or \"//\" are ignored)",
    )
    parser.add_argument(
        "-t", "--template-file", metavar="FILE", required=True,
        help="Jinja2 template file",
    )
    parser.add_argument(
        "-s", "--url", dest="urls", action="append", type=_url_arg, default=[],
        help="A single URL to consider (can be repeated to specify multiple)",
    )
    parser.add_argument(
        "-b", "--before", type=_date_arg,
        help="Only include articles before this date (in YYYY-MM-DD format)",
    )
    parser.add_argument(
        "-c", "--cache", action="store_true",
        help="Use request cache stored on disk. Only prevents refetching if the "
        "feed source responds with a 429; otherwise it lets feedring send "
        "conditional requests using ETag and Last-Modified.",
    )
    parser.add_argument(
        "--cache-file", metavar="FILE",
        default=os.environ.get("FEEDRING_CACHE_FILE", DEFAULT_CACHE_FILE),
        help="Where to keep the request cache (default: %(default)s)",
    )
    parser.add_argument(
        "--max-cache-age", type=_duration_arg, default=DEFAULT_MAX_CACHE_AGE,
        help="Discard all cached requests older than this duration "
        "(default: %(default)s)",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="Increase logging verbosity (-v info, -vv debug)",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Only log errors",
    )
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> Settings:
    args = build_parser().parse_args(argv)
    return Settings(
        template_file=args.template_file,
        urls=args.urls,
        url_file=args.url_file,
        num_articles=args.num_articles,
        per_source=args.per_source,
        before=args.before,
        cache=args.cache,
        cache_file=args.cache_file,
        max_cache_age=args.max_cache_age,
        verbosity=-1 if args.quiet else args.verbose,
    )


def setup_logging(verbosity: int = 0) -> None:
    """Configure root logging for the command line tool.

    ``LOG_LEVEL`` in the environment takes precedence over ``verbosity``.
    """
    if verbosity < 0:
        level = logging.ERROR
    elif verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    level_name = os.environ.get("LOG_LEVEL", "").upper()
    if level_name:
        level = getattr(logging, level_name, level)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger().setLevel(level)
    # Per-feed progress stays visible at the default level; -q silences it
    progress_level = logging.ERROR if verbosity < 0 else min(level, logging.INFO)
    logging.getLogger(PROGRESS_LOGGER).setLevel(progress_level)
    # Suppress verbose connection logs from requests
    logging.getLogger("urllib3").setLevel(logging.WARNING)
