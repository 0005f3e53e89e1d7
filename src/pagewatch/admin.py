"""
Administrative operations over tracked pages and stored events.

Interactive triggers return short diagnostic strings instead of raising, so
they can be surfaced directly to an operator.
"""

from __future__ import annotations

from datetime import date
from itertools import combinations
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import structlog

from pagewatch.container import DependencyContainer
from pagewatch.dedup.similarity import title_similarity, titles_match
from pagewatch.detection import Segmenter, fingerprint
from pagewatch.exceptions import PageNotFoundError, PagewatchError
from pagewatch.pipeline import LANGUAGE_SETTING, Pipeline, summarize_outcome
from pagewatch.protocols import Event, RenderMode, TrackedPage

logger = structlog.get_logger(__name__)

DuplicateSuspect = Tuple[Event, Event, float]


class AdminService:
    """Operator-facing facade over the store and the pipeline."""

    def __init__(self, container: DependencyContainer, pipeline: Optional[Pipeline] = None) -> None:
        self.container = container
        self.pipeline = pipeline or Pipeline(container)

    async def register_page(
        self, url: str, render_mode: RenderMode = RenderMode.STATIC, baseline: bool = False
    ) -> TrackedPage:
        """
        Start tracking a page.

        Args:
            url: Absolute http(s) URL
            render_mode: Whether the page needs a browser to render
            baseline: Fetch the page now and store its snapshot, so only later
                changes trigger extraction

        Raises:
            PagewatchError: The URL is not an absolute http(s) URL
            FetchError: `baseline` was requested and the page could not be fetched
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise PagewatchError(f"Not an absolute http(s) URL: {url}")

        store = await self.container.get_store()
        page = await store.add_page(url, render_mode)
        logger.info("Page registered", page_id=page.id, url=url, render_mode=render_mode.value)

        if baseline:
            fetcher = await self.container.get_fetcher()
            fetched = await fetcher.fetch(url, render_mode)
            segments = Segmenter(self.container.config.detection if self.container.config else None).segment(
                fetched.text
            )
            await store.update_page_snapshot(page.id, fingerprint(segments), segments)
            page = await store.get_page(page.id) or page
            logger.info("Baseline stored", page_id=page.id, segments=len(segments))
        return page

    async def deactivate_page(self, page_id: int) -> None:
        store = await self.container.get_store()
        if not await store.set_page_active(page_id, False):
            raise PageNotFoundError(page_id)
        logger.info("Page deactivated", page_id=page_id)

    async def list_pages(self) -> List[TrackedPage]:
        store = await self.container.get_store()
        return await store.list_pages()

    async def force_check(self, page_id: int) -> str:
        """Run one page now and describe the result."""
        try:
            outcome = await self.pipeline.run_page(page_id)
        except PageNotFoundError as e:
            return str(e)
        _, message = summarize_outcome(outcome)
        return message

    async def pending_events(self, today: Optional[date] = None) -> List[Event]:
        """Upcoming events: dated within the lookback window or undated."""
        store = await self.container.get_store()
        return await store.list_upcoming_events(today or date.today())

    async def duplicate_suspects(
        self, today: Optional[date] = None, lower: Optional[float] = None, upper: Optional[float] = None
    ) -> List[DuplicateSuspect]:
        """
        Pending event pairs on the same date whose titles are close but were
        not merged by fuzzy deduplication.
        """
        config = self.container.config
        lower = lower if lower is not None else (config.dedup.suspect_similarity_threshold if config else 0.6)
        upper = upper if upper is not None else (config.dedup.title_similarity_threshold if config else 0.8)

        by_date: Dict[str, List[Event]] = {}
        for event in await self.pending_events(today):
            if event.date_iso:
                by_date.setdefault(event.date_iso, []).append(event)

        suspects: List[DuplicateSuspect] = []
        for events in by_date.values():
            for a, b in combinations(events, 2):
                score = title_similarity(a.title, b.title)
                if lower <= score <= upper and not titles_match(a.title, b.title, upper):
                    suspects.append((a, b, score))
        suspects.sort(key=lambda s: s[2], reverse=True)
        return suspects

    async def delete_event(self, event_id: int) -> bool:
        store = await self.container.get_store()
        deleted = await store.delete_event(event_id)
        if deleted:
            logger.info("Event deleted", event_id=event_id)
        return deleted

    async def get_language(self) -> str:
        store = await self.container.get_store()
        language = await store.get_setting(LANGUAGE_SETTING)
        if language:
            return language
        return self.container.config.extraction.default_language if self.container.config else "ENGLISH"

    async def set_language(self, language: str) -> str:
        """Set the output language used by the next run."""
        value = language.strip().upper()
        if not value:
            raise PagewatchError("Language must not be empty")
        store = await self.container.get_store()
        await store.set_setting(LANGUAGE_SETTING, value)
        logger.info("Language updated", language=value)
        return value

    async def recent_telemetry(self, limit: int = 10) -> List[Dict[str, Any]]:
        store = await self.container.get_store()
        return await store.list_telemetry(limit)
