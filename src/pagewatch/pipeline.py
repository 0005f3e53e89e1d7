"""
Monitoring run loop for pagewatch.

One run visits every active page strictly one at a time:

    fetch -> segment -> classify -> extract -> deduplicate -> store

Each page is isolated: any failure is recorded against the page and the loop
moves on. Pages are separated by a fixed delay, extended after the extractor
signals a rate limit. Notifications go out after the last page, then one
telemetry row is written.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Awaitable, Callable, List, Optional, Tuple
from uuid import uuid4

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

from pagewatch.config.config import Config, RunnerConfig
from pagewatch.container import DependencyContainer
from pagewatch.dedup import EventIndex
from pagewatch.detection import ChangeClassifier, Segmenter
from pagewatch.discovery import LinkDiscovery
from pagewatch.exceptions import PageNotFoundError, RateLimitError
from pagewatch.extraction import ExtractionOrchestrator
from pagewatch.notify.telegram import format_event_notification
from pagewatch.observability import histogram, increment
from pagewatch.protocols import AdmissionStatus, ChangeState, Event, NotifierProtocol, Telemetry, TrackedPage

LANGUAGE_SETTING = "language"

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class PageOutcome:
    """What happened to one page during a run."""

    page_id: int
    url: str
    state: Optional[ChangeState] = None
    findings: int = 0
    duplicates: int = 0
    new_events: List[Event] = field(default_factory=list)
    discovered: int = 0
    extracted: bool = False
    rate_limited: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def upcoming_events(self) -> List[Event]:
        return [e for e in self.new_events if e.is_future]


@dataclass
class RunSummary:
    """Result of one full monitoring run."""

    run_id: str
    telemetry: Telemetry
    outcomes: List[PageOutcome] = field(default_factory=list)

    @property
    def failed(self) -> List[PageOutcome]:
        return [o for o in self.outcomes if not o.ok]


class Throttle:
    """Fixed pause between pages, extended after a rate limit."""

    def __init__(self, config: Optional[RunnerConfig] = None, sleep: SleepFn = asyncio.sleep) -> None:
        self.config = config or RunnerConfig()
        self._sleep = sleep

    def delay(self, rate_limited: bool = False) -> float:
        extra = self.config.rate_limit_backoff_seconds if rate_limited else 0.0
        return self.config.inter_page_delay_seconds + extra

    async def pause(self, rate_limited: bool = False) -> None:
        seconds = self.delay(rate_limited)
        if seconds > 0:
            await self._sleep(seconds)


class Pipeline:
    """
    Drives the monitoring loop over the tracked pages.
    """

    def __init__(
        self,
        container: DependencyContainer,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.container = container
        self._sleep = sleep
        self._clock = clock
        self.logger = structlog.get_logger(self.__class__.__name__)

    @property
    def config(self) -> Config:
        if self.container.config is None:
            raise RuntimeError("Container must be initialized before running the pipeline")
        return self.container.config

    async def _language(self) -> str:
        store = await self.container.get_store()
        language = await store.get_setting(LANGUAGE_SETTING)
        if not language or language.strip().lower() in ("null", "none", "undefined"):
            return self.config.extraction.default_language
        return language

    async def run(self) -> RunSummary:
        """
        Check every active page once.

        Returns:
            RunSummary with per-page outcomes and the telemetry that was stored
        """
        run_id = uuid4().hex[:12]
        bind_contextvars(run_id=run_id)
        started = time.monotonic()
        telemetry = Telemetry()
        summary = RunSummary(run_id=run_id, telemetry=telemetry)

        try:
            store = await self.container.get_store()
            notifier = await self.container.get_notifier()
            throttle = Throttle(self.config.runner, self._sleep)
            language = await self._language()
            run_date = self._clock()

            pages = await store.list_active_pages()
            self.logger.info("Monitoring run started", pages=len(pages), language=language)

            for index, page in enumerate(pages):
                outcome = await self._process_page(page, language, run_date, telemetry)
                summary.outcomes.append(outcome)
                if index < len(pages) - 1:
                    await throttle.pause(rate_limited=outcome.rate_limited)

            for outcome in summary.outcomes:
                await self._notify(notifier, outcome, telemetry)

            telemetry.duration_ms = int((time.monotonic() - started) * 1000)
            await store.record_telemetry(telemetry)
            self.logger.info(
                "Monitoring run complete",
                pages_checked=telemetry.pages_checked,
                changes_found=telemetry.changes_found,
                extraction_calls=telemetry.extraction_calls,
                notifications_sent=telemetry.notifications_sent,
                errors=telemetry.errors,
                duration_ms=telemetry.duration_ms,
            )
            return summary
        finally:
            unbind_contextvars("run_id")

    async def run_page(self, page_id: int) -> PageOutcome:
        """
        Process one page outside the schedule and notify immediately.

        Raises:
            PageNotFoundError: No page has this id
        """
        store = await self.container.get_store()
        page = await store.get_page(page_id)
        if page is None:
            raise PageNotFoundError(page_id)

        telemetry = Telemetry()
        outcome = await self._process_page(page, await self._language(), self._clock(), telemetry)
        await self._notify(await self.container.get_notifier(), outcome, telemetry)
        return outcome

    async def _process_page(self, page: TrackedPage, language: str, run_date: date, telemetry: Telemetry) -> PageOutcome:
        outcome = PageOutcome(page_id=page.id, url=page.url)
        telemetry.pages_checked += 1
        increment("pages_checked")
        started = time.monotonic()
        log = self.logger.bind(page_id=page.id, url=page.url)

        try:
            await self._check_page(page, language, run_date, outcome, telemetry)
        except RateLimitError as e:
            outcome.rate_limited = True
            outcome.error = str(e)
            await self._record_failure(page, e, telemetry, severity="warning")
            log.warning("Extractor rate limited, backing off", backoff=self.config.runner.rate_limit_backoff_seconds)
        except Exception as e:
            outcome.error = str(e)
            await self._record_failure(page, e, telemetry, severity="error")
            log.error("Page check failed", error=str(e), error_type=type(e).__name__)
        finally:
            histogram("page_duration_seconds", time.monotonic() - started)

        return outcome

    async def _check_page(
        self, page: TrackedPage, language: str, run_date: date, outcome: PageOutcome, telemetry: Telemetry
    ) -> None:
        config = self.config
        store = await self.container.get_store()
        fetcher = await self.container.get_fetcher()

        fetched = await fetcher.fetch(page.url, page.render_mode)
        segments = Segmenter(config.detection).segment(fetched.text)
        decision = ChangeClassifier(config.detection).classify(page.last_fingerprint, page.last_segments, segments)
        outcome.state = decision.state

        if not decision.has_change:
            await store.update_page_snapshot(page.id, decision.fingerprint, decision.segments)
            self.logger.debug("No relevant change", page_id=page.id, state=decision.state.value)
            return

        extractor = await self.container.get_extractor()
        orchestrator = ExtractionOrchestrator(extractor, config.extraction, sleep=self._sleep)
        outcome.extracted = True
        telemetry.extraction_calls += 1
        result = await orchestrator.extract(fetched.text, page.url, language=language, current_date=run_date)

        index = EventIndex(store, config.dedup)
        for finding in result.findings:
            admission = await index.admit(finding, page, run_date)
            outcome.findings += 1
            if admission.status is not AdmissionStatus.NEW:
                outcome.duplicates += 1
            elif admission.event is not None:
                outcome.new_events.append(admission.event)

        await store.log_change(page.id, [f.model_dump(mode="json") for f in result.findings])
        await store.update_page_snapshot(page.id, decision.fingerprint, decision.segments)
        self.logger.info(
            "Page changed",
            page_id=page.id,
            state=decision.state.value,
            findings=outcome.findings,
            new_events=len(outcome.new_events),
            duplicates=outcome.duplicates,
            degraded=result.degraded,
        )

        if fetched.links:
            discovery = LinkDiscovery(extractor, store, await self.container.get_notifier(), config.discovery)
            try:
                outcome.discovered = await discovery.discover(
                    page, fetched.links, language=language, current_date=run_date
                )
            except RateLimitError:
                outcome.rate_limited = True
                self.logger.warning("Link discovery rate limited", page_id=page.id)

    async def _record_failure(self, page: TrackedPage, error: Exception, telemetry: Telemetry, severity: str) -> None:
        telemetry.errors += 1
        increment("page_errors", labels={"kind": type(error).__name__})
        store = await self.container.get_store()
        try:
            await store.log_error(page.id, str(error), error_type=type(error).__name__, severity=severity)
            await store.increment_error_count(page.id)
        except Exception as e:
            self.logger.error("Could not record page failure", page_id=page.id, error=str(e))

    async def _notify(self, notifier: NotifierProtocol, outcome: PageOutcome, telemetry: Telemetry) -> None:
        events = outcome.upcoming_events
        if not events:
            return
        telemetry.changes_found += len(events)
        try:
            sent = await notifier.send(None, format_event_notification(outcome.url, events))
        except Exception as e:
            self.logger.warning("Notification failed", page_id=outcome.page_id, error=str(e))
            return
        if sent:
            telemetry.notifications_sent += 1
            increment("notifications_sent")


def summarize_outcome(outcome: PageOutcome) -> Tuple[bool, str]:
    """One-line human readable description of a page outcome."""
    if outcome.rate_limited and outcome.error:
        return False, f"Rate limited while checking {outcome.url}; try again later."
    if outcome.error:
        return False, f"Error checking {outcome.url}: {outcome.error}"
    if not outcome.extracted:
        state = outcome.state.value if outcome.state else "unknown"
        return True, f"No relevant changes on {outcome.url} ({state})."
    return True, (
        f"Checked {outcome.url}: {outcome.findings} findings, "
        f"{len(outcome.upcoming_events)} new upcoming events, {outcome.duplicates} duplicates."
    )
