"""
Outbound link discovery.

After a page changes, its first links are screened by the extractor with a
link-filter prompt. Approved links are remembered in `discovered_urls` and
announced once.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import structlog

from pagewatch.config.config import DiscoveryConfig
from pagewatch.exceptions import RateLimitError
from pagewatch.extraction.prompts import build_filter_links_prompt
from pagewatch.extraction.validation import strip_code_fences
from pagewatch.notify.telegram import format_discovery_notification
from pagewatch.protocols import ExtractionContext, ExtractorProtocol, Link, NotifierProtocol, TrackedPage

logger = structlog.get_logger(__name__)


def parse_approved_links(raw: str) -> List[Dict[str, Any]]:
    """Approved links from the extractor answer; anything malformed is skipped."""
    try:
        data = json.loads(strip_code_fences(raw))
    except (TypeError, ValueError):
        return []
    if not isinstance(data, list):
        return []
    approved = []
    for item in data:
        if isinstance(item, dict) and isinstance(item.get("href"), str) and item["href"].startswith(("http://", "https://")):
            approved.append(item)
    return approved


class LinkDiscovery:
    """Screens outbound links of changed pages. Best effort."""

    def __init__(
        self,
        extractor: ExtractorProtocol,
        store: Any,
        notifier: NotifierProtocol,
        config: Optional[DiscoveryConfig] = None,
    ) -> None:
        self.extractor = extractor
        self.store = store
        self.notifier = notifier
        self.config = config or DiscoveryConfig()

    async def discover(self, page: TrackedPage, links: Sequence[Link], *, language: str, current_date: date) -> int:
        """
        Screen a page's links and record the approved ones.

        Returns:
            Number of newly recorded URLs

        Raises:
            RateLimitError: The extractor signalled backpressure
        """
        if not self.config.enabled or not links:
            return 0

        limited = [{"href": link.href, "text": link.text} for link in links[: self.config.max_links]]
        context = ExtractionContext(language=language, current_date=current_date, source_url=page.url)
        try:
            raw = await self.extractor.extract(
                json.dumps(limited, ensure_ascii=False), build_filter_links_prompt(language), context
            )
            approved = parse_approved_links(raw)
            new_links = []
            for item in approved:
                if await self.store.add_discovered_url(page.id, item["href"], item.get("title"), item.get("reason")):
                    new_links.append(item)
        except RateLimitError:
            raise
        except Exception as e:
            logger.warning("Link discovery failed", url=page.url, error=str(e))
            return 0

        if new_links:
            message = format_discovery_notification(
                page.url, len(new_links), new_links, limit=self.config.announce_limit
            )
            await self.notifier.send(None, message)
            logger.info("Discovered new links", url=page.url, new=len(new_links), screened=len(limited))
        return len(new_links)
