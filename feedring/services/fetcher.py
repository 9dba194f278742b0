"""
Conditional feed fetcher.

This module provides the FeedFetcher class, which fetches one feed URL
politely: it honours a pending Retry-After backoff from the cache, sends
If-Modified-Since / If-None-Match validators, reuses the cached body on
304 or 429, and records what it learned in the cache entry for that URL.
"""

import datetime
import logging
import time
from typing import Optional

import requests

from feedring.config import VERSION
from feedring.errors import (
    EmptyBodyError,
    RateLimitedError,
    TransportError,
    UnexpectedStatusError,
)
from feedring.models import CacheEntry, ConditionalHeaders, FeedResult
from feedring.parsers.base import FeedParser
from feedring.parsers.rss import RSSParser
from feedring.services.cache import CacheStore, EntryHandle, utcnow

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
CHUNK_SIZE = 8192
USER_AGENT = f"feedring/{VERSION}"
DEFAULT_RETRY_AFTER = datetime.timedelta(hours=4)


def normalize_etag(value: Optional[str]) -> Optional[str]:
    """ETag values must carry their quotes; add them if the server didn't."""
    if value is None:
        return None
    strong = len(value) >= 2 and value.startswith('"') and value.endswith('"')
    weak = len(value) >= 4 and value.startswith('W/"') and value.endswith('"')
    if strong or weak:
        return value
    return f'"{value}"'


def parse_retry_after(value: Optional[str]) -> datetime.timedelta:
    """Reads a Retry-After header given in whole seconds.

    Missing or non-integer values (including HTTP dates) fall back to
    waiting four hours.
    """
    if value is None:
        return DEFAULT_RETRY_AFTER
    try:
        seconds = int(value.strip())
    except ValueError:
        return DEFAULT_RETRY_AFTER
    return datetime.timedelta(seconds=max(seconds, 0))


class FeedFetcher:
    """Fetches and parses single feeds against a shared CacheStore."""

    def __init__(
        self,
        parser: Optional[FeedParser] = None,
        timeout: float = REQUEST_TIMEOUT,
        user_agent: str = USER_AGENT,
    ):
        self.parser = parser or RSSParser()
        self.timeout = timeout
        self.user_agent = user_agent

    def fetch(self, url: str, store: CacheStore) -> FeedResult:
        """Fetches ``url`` and returns the parsed feed.

        Raises a FeedringError subclass if the feed can't be obtained or
        isn't valid feed markup.
        """
        handle = store.upsert(url)
        entry = handle.entry

        # Respect Retry-After if a previous run was rate limited
        if entry is not None and entry.retry_window_open(utcnow()):
            if entry.body is not None:
                logger.debug(
                    "Skipping request to %s due to 429 at %s (retry after %s), "
                    "using feed from cache.",
                    url,
                    entry.timestamp,
                    entry.retry_after,
                )
                return FeedResult(url, self.parser.parse(url, entry.body), from_cache=True)
            logger.warning("Empty cached feed for %s, requesting anyway.", url)

        body = self._request(handle)
        return FeedResult(url, self.parser.parse(url, body))

    def _request(self, handle: EntryHandle) -> str:
        url = handle.url
        headers = {"User-Agent": self.user_agent}
        # Add friendly headers if a cache entry is available
        headers.update(ConditionalHeaders.from_entry(handle.entry).as_dict())
        logger.debug("Sending request to %s with headers %s", url, headers)

        # requests' timeout only bounds connect and each socket read, so the
        # whole request, body included, is bounded by this deadline.
        deadline = time.monotonic() + self.timeout
        try:
            resp = requests.get(url, headers=headers, timeout=self.timeout, stream=True)
        except requests.RequestException as e:
            logger.warning("Failed to get feed %s: %s", url, e)
            raise TransportError(url, str(e)) from e

        try:
            logger.debug("Received HTTP %s from %s", resp.status_code, url)
            if resp.status_code in (200, 304):
                return self._handle_ok(handle, resp, deadline)
            if resp.status_code == 429:
                return self._handle_rate_limited(handle, resp)
            raise UnexpectedStatusError(url, resp.status_code)
        finally:
            resp.close()

    def _handle_ok(
        self, handle: EntryHandle, resp: requests.Response, deadline: float
    ) -> str:
        url = handle.url
        entry = handle.entry
        etag = normalize_etag(resp.headers.get("etag"))
        last_modified = resp.headers.get("last-modified")
        now = utcnow()

        if resp.status_code == 304:
            if entry is None or entry.body is None:
                logger.warning("Got 304 for %s but nothing is cached.", url)
                raise EmptyBodyError(url)
            logger.debug("Got 304 for %s, using feed from cache.", url)
            entry.timestamp = now
            entry.retry_after = None
            if etag is not None:
                entry.etag = etag
            if last_modified is not None:
                entry.last_modified = last_modified
            return entry.body

        body = self._read_body(url, resp, deadline)
        if body is None:
            logger.warning("Empty feed: %s", url)
            raise EmptyBodyError(url)

        if entry is None:
            logger.debug("Using feed from body of %s and adding to cache.", url)
            handle.insert(
                CacheEntry(
                    timestamp=now, etag=etag, last_modified=last_modified, body=body
                )
            )
        else:
            logger.debug("Cache hit for %s, using feed from body.", url)
            entry.timestamp = now
            entry.retry_after = None
            entry.etag = etag
            entry.last_modified = last_modified
            entry.body = body
        return body

    def _handle_rate_limited(self, handle: EntryHandle, resp: requests.Response) -> str:
        url = handle.url
        entry = handle.entry
        retry_after = parse_retry_after(resp.headers.get("retry-after"))
        if entry is None:
            logger.warning("Got 429 for %s and nothing is cached.", url)
            raise RateLimitedError(url)

        entry.timestamp = utcnow()
        entry.retry_after = retry_after
        if entry.body is None:
            logger.warning("Got 429 for %s and nothing is cached.", url)
            raise RateLimitedError(url)
        logger.debug("Got 429 for %s (retry after %s), using feed from cache.", url, retry_after)
        return entry.body

    def _read_body(
        self, url: str, resp: requests.Response, deadline: float
    ) -> Optional[str]:
        """Reads the streamed body, giving up once ``deadline`` has passed.

        Returns None if the connection fails mid-body.
        """
        chunks = []
        try:
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                chunks.append(chunk)
                if time.monotonic() > deadline:
                    logger.warning(
                        "Reading %s took longer than %ss, giving up.", url, self.timeout
                    )
                    raise TransportError(url, "timed out")
        except requests.RequestException as e:
            logger.warning("Failed to read body of %s: %s", url, e)
            return None
        # XML defaults to UTF-8 when neither header nor requests names a charset
        return b"".join(chunks).decode(resp.encoding or "utf-8", errors="replace")
