"""
Event deduplication index.

Decides whether a validated finding is a new event:
1. Exact layer: identity hash already stored.
2. Fuzzy layer: an event on the same date with a matching title.
3. Otherwise insert; a lost insert race on the unique hash is absorbed as an
   exact duplicate.

The store's unique `content_hash` index is the final guard, so two overlapping
runs can never persist the same identity twice.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional

import structlog

from pagewatch.config.config import DedupConfig
from pagewatch.observability import increment
from pagewatch.protocols import Admission, AdmissionStatus, EventStoreProtocol, Finding, TrackedPage

from .identity import identity_hash

logger = structlog.get_logger(__name__)


def _parse_iso(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def is_future_event(finding: Finding, run_date: date) -> bool:
    """
    Future flag to persist for a finding.

    A finding reported as upcoming whose ISO date lies before the run date is
    stored as past. Unparseable dates keep the reported flag.
    """
    if finding.is_past:
        return False
    event_date = _parse_iso(finding.date_iso)
    if event_date is not None and event_date < run_date:
        logger.info("Correcting stale upcoming finding", title=finding.title, date_iso=finding.date_iso)
        return False
    return True


class EventIndex:
    """Admits findings into the event store exactly once per identity."""

    def __init__(self, store: EventStoreProtocol, config: Optional[DedupConfig] = None) -> None:
        self.store = store
        self.config = config or DedupConfig()

    def _record(self, finding: Finding, page: TrackedPage, content_hash: str, run_date: date) -> Dict[str, Any]:
        return {
            "page_id": page.id,
            "title": finding.title,
            "summary": finding.summary,
            "date_iso": finding.date_iso,
            "price_info": finding.price_info,
            "location": finding.location,
            "source_link": finding.link or page.url,
            "content_hash": content_hash,
            "is_future": is_future_event(finding, run_date),
        }

    async def admit(self, finding: Finding, page: TrackedPage, run_date: date) -> Admission:
        """
        Submit one finding.

        Args:
            finding: Validated finding
            page: Page the finding was extracted from
            run_date: Date of the current run, used for temporal correction

        Returns:
            Admission describing what happened; `notify` is set for new upcoming events
        """
        content_hash = identity_hash(finding)

        if await self.store.event_exists(content_hash):
            increment("dedup_outcomes", labels={"layer": "exact"})
            logger.debug("Exact duplicate", title=finding.title, hash=content_hash[:12])
            return Admission(AdmissionStatus.EXACT_DUPLICATE, content_hash, finding)

        if finding.date_iso:
            matched = await self.store.find_similar_event(
                finding.date_iso, finding.title, self.config.title_similarity_threshold
            )
            if matched is not None:
                increment("dedup_outcomes", labels={"layer": "fuzzy"})
                logger.info("Fuzzy duplicate", title=finding.title, date_iso=finding.date_iso, matched_event_id=matched)
                return Admission(AdmissionStatus.FUZZY_DUPLICATE, content_hash, finding, matched_event_id=matched)

        event = await self.store.add_event(self._record(finding, page, content_hash, run_date))
        if event is None:
            increment("dedup_outcomes", labels={"layer": "conflict"})
            logger.info("Concurrent insert absorbed", title=finding.title, hash=content_hash[:12])
            return Admission(AdmissionStatus.EXACT_DUPLICATE, content_hash, finding)

        increment("dedup_outcomes", labels={"layer": "new"})
        logger.info("New event stored", event_id=event.id, title=event.title, is_future=event.is_future)
        return Admission(AdmissionStatus.NEW, content_hash, finding, event=event)
