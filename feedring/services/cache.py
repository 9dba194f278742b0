"""
Feed cache service.

This module provides the CacheStore class which keeps the last response of
every feed (body plus ETag/Last-Modified validators and any Retry-After
backoff) in a single JSON file between runs.

Fetch tasks run concurrently but each task only ever touches the entry for
its own URL, so entries need no locking of their own. The lock here only
protects the dictionary itself against concurrent inserts and iteration.
"""

import datetime
import json
import logging
import os
import tempfile
import threading
import time
from typing import Dict, ItemsView, Optional

from feedring.config import DEFAULT_CACHE_FILE
from feedring.errors import CacheIoError
from feedring.models import CacheEntry

logger = logging.getLogger(__name__)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class EntryHandle:
    """Read-then-write access to the cache entry of one URL."""

    def __init__(self, store: "CacheStore", url: str):
        self._store = store
        self.url = url
        self.entry: Optional[CacheEntry] = store.get(url)

    def insert(self, entry: CacheEntry) -> CacheEntry:
        """Creates (or replaces) the entry for this handle's URL."""
        self._store.put(self.url, entry)
        self.entry = entry
        return entry


class CacheStore:
    """URL -> CacheEntry mapping shared by all fetch tasks of a run."""

    def __init__(self, entries: Optional[Dict[str, CacheEntry]] = None):
        self._entries: Dict[str, CacheEntry] = dict(entries or {})
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._entries

    def get(self, url: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(url)

    def put(self, url: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[url] = entry

    def upsert(self, url: str) -> EntryHandle:
        """Returns a handle on the entry for ``url``, existing or not."""
        return EntryHandle(self, url)

    def items(self) -> ItemsView[str, CacheEntry]:
        with self._lock:
            return dict(self._entries).items()

    def store(self, path: str) -> None:
        """Writes the whole cache to ``path``, replacing it atomically."""
        with self._lock:
            data = {url: entry.to_dict() for url, entry in self._entries.items()}

        directory = os.path.dirname(os.path.abspath(path))
        try:
            fd, tmp_path = tempfile.mkstemp(
                prefix=".feedringcache-", suffix=".tmp", dir=directory
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f)
                os.replace(tmp_path, path)
            except BaseException:
                os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise CacheIoError(path, str(e)) from e
        logger.info("Saved %d feeds to cache %s.", len(data), path)

    @classmethod
    def load(
        cls,
        path: str,
        max_age: datetime.timedelta,
        now: Optional[datetime.datetime] = None,
    ) -> "CacheStore":
        """Loads the cache from ``path``, dropping entries ``max_age`` or older."""
        now = now or utcnow()
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise ValueError("expected a JSON object")
            entries = {url: CacheEntry.from_dict(value) for url, value in raw.items()}
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise CacheIoError(path, str(e)) from e

        fresh = {
            url: entry
            for url, entry in entries.items()
            if now - entry.timestamp < max_age
        }
        if len(fresh) != len(entries):
            logger.debug(
                "Discarded %d cache entries older than %s.",
                len(entries) - len(fresh),
                max_age,
            )
        return cls(fresh)


def load_cache(
    path: str = DEFAULT_CACHE_FILE,
    max_age: datetime.timedelta = datetime.timedelta(days=14),
    enabled: bool = True,
) -> CacheStore:
    """Loads the cache if enabled and still valid.

    Starting without a cache is normal, so every problem here ends in an
    empty store rather than an error.
    """
    if not enabled:
        return CacheStore()

    try:
        modified = os.path.getmtime(path)
    except OSError:
        logger.debug("No cache found at %s. Starting with an empty cache.", path)
        return CacheStore()

    # Whole-file shortcut: if nothing was written since max_age, no entry
    # can survive the per-entry filter below.
    age = datetime.timedelta(seconds=max(time.time() - modified, 0))
    if age > max_age:
        logger.warning(
            "Cache is too old (age: %s, max age: %s). Discarding and recreating.",
            age,
            max_age,
        )
        return CacheStore()
    logger.info("Cache is recent (age: %s, max age: %s). Using.", age, max_age)

    try:
        return CacheStore.load(path, max_age)
    except CacheIoError as e:
        logger.warning("Error while loading cache: %s. Continuing without.", e)
        return CacheStore()


def save_cache(store: CacheStore, path: str = DEFAULT_CACHE_FILE) -> bool:
    """Persists the cache, logging instead of raising on failure."""
    try:
        store.store(path)
    except CacheIoError as e:
        logger.warning("Error while saving cache: %s", e)
        return False
    return True
