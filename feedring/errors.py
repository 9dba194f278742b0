"""
Exceptions raised by feedring.

Per-feed errors (everything raised by the fetcher) are collected and
reported without stopping the run. Cache errors are always absorbed by the
caller and logged as warnings.
"""

from typing import Optional


class FeedringError(Exception):
    """Base class for all feedring errors."""


class EmptyBodyError(FeedringError):
    """The server answered successfully but there was no body to use."""

    def __init__(self, url: str):
        super().__init__(f"The feed at `{url}` was empty.")
        self.url = url


class RateLimitedError(FeedringError):
    """HTTP 429 with nothing cached to fall back on."""

    def __init__(self, url: str):
        super().__init__(f"The request feed at `{url}` was rate limited (HTTP 429).")
        self.url = url


class UnexpectedStatusError(FeedringError):
    def __init__(self, url: str, status: int):
        super().__init__(
            f"The request feed at `{url}` received an unexpected error (HTTP {status})."
        )
        self.url = url
        self.status = status


class TransportError(FeedringError):
    """Connection failure, DNS failure or timeout."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to get feed `{url}`: {reason}")
        self.url = url
        self.reason = reason


class ParseError(FeedringError):
    """The body was fetched but is not valid feed markup."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to parse feed from `{url}`: {reason}")
        self.url = url
        self.reason = reason


class CacheIoError(FeedringError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Cache file `{path}` could not be used: {reason}")
        self.path = path
        self.reason = reason


class FeedMissingError(FeedringError):
    def __init__(self) -> None:
        super().__init__(
            "No feed urls were provided. Provide feeds with -s or -S <FILE>."
        )


class FeedUrlError(FeedringError):
    """A feed URL given on the command line or in a URL file is invalid."""

    def __init__(self, url: str, reason: str, source: Optional[str] = None,
                 line: Optional[int] = None):
        where = f"{source}:{line}: " if source is not None else ""
        super().__init__(f"{where}Failed to parse feed url `{url}`: {reason}")
        self.url = url
        self.reason = reason
        self.source = source
        self.line = line


class FeedBadTitleError(FeedringError):
    def __init__(self, url: str):
        super().__init__(
            f"The feed at `{url}` has a bad title (e.g., missing link or title)."
        )
        self.url = url


class TemplateError(FeedringError):
    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to render template `{path}`: {reason}")
        self.path = path
        self.reason = reason
