"""
Data models for the feedring webring generator.
"""

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TypedDict

from feedring.errors import FeedringError


class Article(TypedDict):
    """Type definition for an article."""

    link: str
    title: str
    summary: str
    source_link: str
    source_title: str
    timestamp: datetime.datetime


@dataclass
class CacheEntry:
    """Cached result of the last fetch of a single feed URL."""

    timestamp: datetime.datetime
    retry_after: Optional[datetime.timedelta] = None
    last_modified: Optional[str] = None
    etag: Optional[str] = None
    body: Optional[str] = None

    def retry_window_open(self, now: datetime.datetime) -> bool:
        """True while a previous 429 still asks us not to hit the server."""
        if self.retry_after is None:
            return False
        return self.timestamp + self.retry_after > now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "retry_after": (
                self.retry_after.total_seconds()
                if self.retry_after is not None
                else None
            ),
            "last_modified": self.last_modified,
            "etag": self.etag,
            "body": self.body,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        timestamp = datetime.datetime.fromisoformat(data["timestamp"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=datetime.timezone.utc)
        retry_after = data.get("retry_after")
        return cls(
            timestamp=timestamp,
            retry_after=(
                datetime.timedelta(seconds=retry_after)
                if retry_after is not None
                else None
            ),
            last_modified=data.get("last_modified"),
            etag=data.get("etag"),
            body=data.get("body"),
        )


@dataclass
class ConditionalHeaders:
    """Validators sent back to the origin so it may answer 304.

    Either value may be present without the other.
    """

    if_modified_since: Optional[str] = None
    if_none_match: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: Optional[CacheEntry]) -> "ConditionalHeaders":
        if entry is None:
            return cls()
        return cls(if_modified_since=entry.last_modified, if_none_match=entry.etag)

    def as_dict(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.if_modified_since is not None:
            headers["If-Modified-Since"] = self.if_modified_since
        if self.if_none_match is not None:
            headers["If-None-Match"] = self.if_none_match
        return headers


@dataclass
class FeedResult:
    """A successfully parsed feed.

    ``from_cache`` is set when the feed was served from the cache without
    any network request, because the server's Retry-After window was still
    open.
    """

    url: str
    feed: Any
    from_cache: bool = False


@dataclass
class FetchFailure:
    """A feed that could not be fetched or parsed during this run."""

    url: str
    error: FeedringError


@dataclass
class FetchReport:
    """Outcome of fetching a batch of feeds."""

    feeds: List[FeedResult] = field(default_factory=list)
    failures: List[FetchFailure] = field(default_factory=list)
