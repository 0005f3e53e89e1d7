"""Unit tests for outbound link discovery."""

import json

import pytest

from pagewatch.config import DiscoveryConfig
from pagewatch.discovery import LinkDiscovery, parse_approved_links
from pagewatch.exceptions import ExtractorError, RateLimitError
from pagewatch.protocols import Link
from tests.helpers.fakes import RUN_DATE, FakeExtractor, FakeNotifier

APPROVED = json.dumps(
    [{"href": "https://other-sauna.example/", "title": "Other Sauna Club", "reason": "Comparable venue"}]
)


async def discover(discovery, page, links):
    return await discovery.discover(page, links, language="ENGLISH", current_date=RUN_DATE)


@pytest.mark.unit
def test_parse_approved_links_skips_malformed_entries():
    raw = "```json\n" + json.dumps(
        [
            {"href": "https://a.example/", "title": "A"},
            {"href": "ftp://b.example/"},
            {"title": "No href"},
            "https://c.example/",
        ]
    ) + "\n```"
    assert parse_approved_links(raw) == [{"href": "https://a.example/", "title": "A"}]
    assert parse_approved_links("not json") == []
    assert parse_approved_links('{"href": "https://a.example/"}') == []


@pytest.mark.unit
class TestLinkDiscovery:
    @pytest.fixture
    async def page(self, store):
        return await store.add_page("https://sauna.example/")

    @pytest.mark.asyncio
    async def test_new_links_are_stored_and_announced_once(self, store, page, sample_links):
        extractor = FakeExtractor(links_response=APPROVED)
        notifier = FakeNotifier()
        discovery = LinkDiscovery(extractor, store, notifier)

        assert await discover(discovery, page, sample_links) == 1
        assert await discover(discovery, page, sample_links) == 0

        assert len(notifier.messages) == 1
        assert "Other Sauna Club" in notifier.messages[0][1]
        (row,) = await store.list_discovered_urls()
        assert row["url"] == "https://other-sauna.example/"
        assert row["reason"] == "Comparable venue"

    @pytest.mark.asyncio
    async def test_sends_only_first_links(self, store, page):
        links = [Link(href=f"https://venue{i}.example/", text=f"Venue {i}") for i in range(30)]
        extractor = FakeExtractor()
        discovery = LinkDiscovery(extractor, store, FakeNotifier(), DiscoveryConfig(max_links=20))

        await discover(discovery, page, links)

        sent = json.loads(extractor.link_calls[0])
        assert len(sent) == 20
        assert sent[0] == {"href": "https://venue0.example/", "text": "Venue 0"}

    @pytest.mark.asyncio
    async def test_nothing_approved_sends_nothing(self, store, page, sample_links):
        notifier = FakeNotifier()
        discovery = LinkDiscovery(FakeExtractor(links_response="[]"), store, notifier)

        assert await discover(discovery, page, sample_links) == 0
        assert notifier.messages == []

    @pytest.mark.asyncio
    async def test_disabled(self, store, page, sample_links):
        extractor = FakeExtractor()
        discovery = LinkDiscovery(extractor, store, FakeNotifier(), DiscoveryConfig(enabled=False))

        assert await discover(discovery, page, sample_links) == 0
        assert extractor.link_calls == []

    @pytest.mark.asyncio
    async def test_no_links(self, store, page):
        extractor = FakeExtractor()
        assert await discover(LinkDiscovery(extractor, store, FakeNotifier()), page, []) == 0
        assert extractor.link_calls == []

    @pytest.mark.asyncio
    async def test_extractor_failure_is_swallowed(self, store, page, sample_links):
        discovery = LinkDiscovery(FakeExtractor(links_response=ExtractorError("boom")), store, FakeNotifier())
        assert await discover(discovery, page, sample_links) == 0

    @pytest.mark.asyncio
    async def test_rate_limit_propagates(self, store, page, sample_links):
        discovery = LinkDiscovery(FakeExtractor(links_response=RateLimitError()), store, FakeNotifier())
        with pytest.raises(RateLimitError):
            await discover(discovery, page, sample_links)
