"""
Exception hierarchy for pagewatch.

Page-local failures are raised as one of these types and caught by the run
loop, which records them against the page and moves on.
"""

from __future__ import annotations


class PagewatchError(Exception):
    """Base class for all pagewatch errors."""


class ConfigurationError(PagewatchError):
    """Raised when configuration is missing or invalid."""


class FetchError(PagewatchError):
    """A page could not be retrieved or rendered."""

    def __init__(self, url: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status = status


class ExtractorError(PagewatchError):
    """The structured extractor failed to produce a response."""


class RateLimitError(ExtractorError):
    """The extractor signalled backpressure (HTTP 429). Never retried locally."""

    def __init__(self, message: str = "429 Too Many Requests", retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class PageNotFoundError(PagewatchError):
    """No tracked page exists with the requested id."""

    def __init__(self, page_id: int) -> None:
        super().__init__(f"Tracked page {page_id} not found")
        self.page_id = page_id
