"""Unit tests for pipeline helpers and single-page processing."""

import pytest

from pagewatch.config import RunnerConfig
from pagewatch.exceptions import ConfigurationError, PageNotFoundError, RateLimitError
from pagewatch.observability import METRICS
from pagewatch.pipeline import LANGUAGE_SETTING, PageOutcome, Pipeline, Throttle, summarize_outcome
from pagewatch.protocols import ChangeState, Event, FetchResult, Link
from tests.helpers.fakes import RUN_DATE, RecordingSleep, analysis, finding, page_text
from tests.helpers.metric_delta import histogram_observes

URL = "https://sauna.example/"
TEXT = page_text("Weekly sauna ritual every Friday evening", "Cold plunge sessions on Sunday morning")


def make_event(is_future=True, title="Sauna Night"):
    return Event(
        id=1,
        page_id=1,
        title=title,
        summary="",
        date_iso="2025-07-12",
        price_info="",
        location="",
        source_link=URL,
        content_hash=title,
        is_future=is_future,
    )


@pytest.fixture
def pipeline(container, sleeper):
    return Pipeline(container, sleep=sleeper, clock=lambda: RUN_DATE)


@pytest.mark.unit
class TestThrottle:
    def test_delay(self):
        throttle = Throttle(RunnerConfig(inter_page_delay_seconds=5, rate_limit_backoff_seconds=60))
        assert throttle.delay() == 5
        assert throttle.delay(rate_limited=True) == 65

    @pytest.mark.asyncio
    async def test_pause(self):
        sleeper = RecordingSleep()
        throttle = Throttle(RunnerConfig(inter_page_delay_seconds=5, rate_limit_backoff_seconds=60), sleeper)

        await throttle.pause()
        await throttle.pause(rate_limited=True)

        assert sleeper.delays == [5, 65]

    @pytest.mark.asyncio
    async def test_zero_delay_does_not_sleep(self):
        sleeper = RecordingSleep()
        await Throttle(RunnerConfig(inter_page_delay_seconds=0, rate_limit_backoff_seconds=0), sleeper).pause()
        assert sleeper.delays == []


@pytest.mark.unit
class TestSummarizeOutcome:
    def test_rate_limited(self):
        outcome = PageOutcome(page_id=1, url=URL, rate_limited=True, error="429 Too Many Requests")
        assert summarize_outcome(outcome) == (False, f"Rate limited while checking {URL}; try again later.")

    def test_error(self):
        outcome = PageOutcome(page_id=1, url=URL, error="boom")
        assert summarize_outcome(outcome) == (False, f"Error checking {URL}: boom")

    def test_no_change(self):
        outcome = PageOutcome(page_id=1, url=URL, state=ChangeState.INSIGNIFICANT)
        assert summarize_outcome(outcome) == (True, f"No relevant changes on {URL} (insignificant).")

    def test_extracted(self):
        outcome = PageOutcome(
            page_id=1,
            url=URL,
            state=ChangeState.SIGNIFICANT,
            extracted=True,
            findings=3,
            duplicates=1,
            new_events=[make_event(), make_event(is_future=False, title="Old")],
        )
        assert outcome.ok
        assert [e.title for e in outcome.upcoming_events] == ["Sauna Night"]
        assert summarize_outcome(outcome) == (True, f"Checked {URL}: 3 findings, 1 new upcoming events, 1 duplicates.")


@pytest.mark.unit
class TestRunPage:
    @pytest.mark.asyncio
    async def test_missing_page(self, pipeline):
        with pytest.raises(PageNotFoundError):
            await pipeline.run_page(42)

    @pytest.mark.asyncio
    async def test_stored_language_is_used(self, pipeline, container, fetcher, extractor):
        store = await container.get_store()
        page = await store.add_page(URL)
        await store.set_setting(LANGUAGE_SETTING, "FINNISH")
        fetcher.pages[URL] = TEXT
        extractor.responses.append(analysis([finding("Sauna Night")]))

        await pipeline.run_page(page.id)

        assert extractor.calls[0].language == "FINNISH"
        assert extractor.calls[0].current_date == RUN_DATE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stored", [None, "null", "undefined"])
    async def test_default_language(self, pipeline, container, fetcher, extractor, stored):
        store = await container.get_store()
        page = await store.add_page(URL)
        if stored is not None:
            await store.set_setting(LANGUAGE_SETTING, stored)
        fetcher.pages[URL] = TEXT
        extractor.responses.append(analysis([finding("Sauna Night")]))

        await pipeline.run_page(page.id)

        assert extractor.calls[0].language == "ENGLISH"

    @pytest.mark.asyncio
    async def test_change_is_logged_and_snapshot_stored(self, pipeline, container, fetcher, extractor):
        store = await container.get_store()
        page = await store.add_page(URL)
        fetcher.pages[URL] = TEXT
        extractor.responses.append(analysis([finding("Sauna Night")], past=[finding("Spring Ritual", "2025-03-01")]))

        with histogram_observes(METRICS["page_duration_seconds"]):
            outcome = await pipeline.run_page(page.id)

        assert outcome.state is ChangeState.INITIAL
        assert outcome.findings == 2
        assert len(outcome.new_events) == 2
        assert [e.title for e in outcome.upcoming_events] == ["Sauna Night"]
        (entry,) = await store.list_changes(page.id)
        assert "Spring Ritual" in entry.raw_findings_json
        stored = await store.get_page(page.id)
        assert stored.last_fingerprint is not None
        assert stored.error_count == 0

    @pytest.mark.asyncio
    async def test_links_are_screened_after_change(self, pipeline, container, fetcher, extractor, notifier):
        store = await container.get_store()
        page = await store.add_page(URL)
        fetcher.pages[URL] = FetchResult(text=TEXT, links=[Link(href="https://other.example/", text="Other sauna")])
        extractor.responses.append(analysis([finding("Sauna Night")]))
        extractor.links_response = '[{"href": "https://other.example/", "title": "Other sauna", "reason": "Venue"}]'

        outcome = await pipeline.run_page(page.id)

        assert outcome.discovered == 1
        assert len(extractor.link_calls) == 1
        assert len(notifier.messages) == 2

    @pytest.mark.asyncio
    async def test_discovery_rate_limit_does_not_fail_page(self, pipeline, container, fetcher, extractor):
        store = await container.get_store()
        page = await store.add_page(URL)
        fetcher.pages[URL] = FetchResult(text=TEXT, links=[Link(href="https://other.example/", text="Other sauna")])
        extractor.responses.append(analysis([finding("Sauna Night")]))
        extractor.links_response = RateLimitError()

        outcome = await pipeline.run_page(page.id)

        assert outcome.ok
        assert outcome.rate_limited
        assert (await store.get_page(page.id)).last_fingerprint is not None

    @pytest.mark.asyncio
    async def test_notifier_rejection_is_not_counted(self, container, fetcher, extractor, notifier, sleeper):
        store = await container.get_store()
        await store.add_page(URL)
        fetcher.pages[URL] = TEXT
        extractor.responses.append(analysis([finding("Sauna Night")]))
        notifier.accept = False

        summary = await Pipeline(container, sleep=sleeper, clock=lambda: RUN_DATE).run()

        assert summary.telemetry.changes_found == 1
        assert summary.telemetry.notifications_sent == 0
        assert len(notifier.messages) == 1

    @pytest.mark.asyncio
    async def test_missing_api_key_fails_page_and_keeps_snapshot(self, pipeline, container, fetcher, extractor, sleeper):
        store = await container.get_store()
        page = await store.add_page(URL)
        fetcher.pages[URL] = TEXT
        extractor.default = ConfigurationError("Extraction API key is not configured")

        outcome = await pipeline.run_page(page.id)

        assert not outcome.ok
        assert len(extractor.calls) == 1
        assert sleeper.delays == []
        stored = await store.get_page(page.id)
        assert stored.last_fingerprint is None
        assert stored.error_count == 1
        (error,) = await store.list_errors(page.id)
        assert error["error_type"] == "ConfigurationError"
        assert error["severity"] == "error"
