"""
RSS/Atom feed parser implementation.

This module provides the RSSParser class, which parses feed bodies with
feedparser and extracts the articles that end up in the webring.
"""

import calendar
import datetime
import html
import io
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlparse

import feedparser  # type: ignore

from feedring.errors import FeedBadTitleError, ParseError
from feedring.models import Article

logger = logging.getLogger(__name__)

_TAG_RE = re.compile("<.*?>", re.DOTALL)


def clean_html(raw_html: Optional[str]) -> str:
    """Removes HTML tags and entities from a string."""
    if not raw_html:
        return ""
    text = html.unescape(_TAG_RE.sub("", raw_html))
    return " ".join(text.split())


def _origin(url: str) -> str:
    parts = urlparse(url)
    return f"{parts.scheme}://{parts.netloc}/"


def resolve_link(href: str, feed_url: str) -> str:
    """Makes a possibly relative link absolute against the feed's origin."""
    return urljoin(_origin(feed_url), href)


def _find_link(links: List[Dict[str, Any]], skip_self: bool) -> Optional[str]:
    for link in links:
        if link.get("rel") == "alternate" and link.get("href"):
            return link["href"]
    # No alternate link, just grab one of them
    for link in links:
        if skip_self and link.get("rel") == "self":
            continue
        if link.get("href"):
            return link["href"]
    return None


class RSSParser:
    """Parses standard RSS and Atom feeds."""

    def parse(self, url: str, body: str) -> Any:
        """Parses a single feed body."""
        # A stream, so feedparser never mistakes the body for a URL or path
        parsed = feedparser.parse(io.BytesIO(body.encode("utf-8")))
        if not parsed.get("version"):
            reason = parsed.get("bozo_exception") or "not a recognized feed format"
            logger.warning("Failed to parse feed %s: %s", url, reason)
            raise ParseError(url, str(reason))
        return parsed

    def source_title(self, feed: Any, url: str) -> str:
        title = feed.feed.get("title")
        if title:
            return title
        return urlparse(url).hostname or url

    def source_link(self, feed: Any, url: str) -> str:
        # Ignore "self" rels, which usually link to the feed itself
        href = _find_link(feed.feed.get("links", []), skip_self=True)
        if href is None:
            raise FeedBadTitleError(url)
        return resolve_link(href, url)

    def extract_articles(
        self,
        feed: Any,
        url: str,
        per_source: int,
        before: Optional[datetime.datetime] = None,
    ) -> List[Article]:
        """Builds articles from the first ``per_source`` entries of a feed.

        Entries without a link, a title and a date are skipped. If
        ``before`` is given, entries newer than it are skipped too.
        """
        source_title = self.source_title(feed, url)
        source_link = self.source_link(feed, url)

        items: List[Article] = []
        for entry in feed.entries[:per_source]:
            href = _find_link(entry.get("links", []), skip_self=False)
            title = entry.get("title")
            date = entry.get("published_parsed") or entry.get("updated_parsed")
            if not (href and title and date):
                logger.warning(
                    "Skipping entry from %s: must have link, title, and a date.", url
                )
                continue

            timestamp = datetime.datetime.fromtimestamp(
                calendar.timegm(date), tz=datetime.timezone.utc
            )
            if before is not None and timestamp > before:
                continue

            summary = entry.get("summary")
            if not summary and entry.get("content"):
                summary = entry.content[0].get("value")
            if not summary:
                logger.info("No summary or content provided for %s.", href)

            items.append(
                Article(
                    link=resolve_link(href, url),
                    title=title,
                    summary=clean_html(summary),
                    source_link=source_link,
                    source_title=source_title,
                    timestamp=timestamp,
                )
            )
        return items
