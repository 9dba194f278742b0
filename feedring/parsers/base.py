"""
Base classes and interfaces for feed parsers.

This module defines the contract that the fetcher relies on to turn a raw
response body into a structured feed.
"""

from typing import Any, Protocol


class FeedParser(Protocol):
    """
    Protocol for feed parsers.

    Implementations must be synchronous and free of side effects, since
    they are called from many fetch threads at once.
    """

    def parse(self, url: str, body: str) -> Any:
        """Parses a feed body, raising ParseError if it is not a feed."""
