"""Page retrieval."""

from .fetcher import PageFetcher, extract_links, html_to_text

__all__ = ["PageFetcher", "extract_links", "html_to_text"]
