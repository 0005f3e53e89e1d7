"""Unit tests for Telegram formatting and delivery."""

import aiohttp
import pytest
from aioresponses import aioresponses
from yarl import URL

from pagewatch.config import NotifierConfig
from pagewatch.notify import TelegramNotifier, format_discovery_notification, format_event_notification
from pagewatch.notify.telegram import split_message
from pagewatch.protocols import Event

SEND_URL = "https://api.telegram.org/bot123:abc/sendMessage"


def make_event(**overrides):
    data = dict(
        id=1,
        page_id=1,
        title="Sauna Night",
        summary="Guided sauna rituals with aromatic infusions.",
        date_iso="2025-07-12",
        price_info="€25",
        location="Helsinki",
        source_link="https://sauna.example/events/night",
        content_hash="abc",
        is_future=True,
    )
    data.update(overrides)
    return Event(**data)


@pytest.mark.unit
class TestFormatting:
    def test_event_notification(self):
        message = format_event_notification("https://sauna.example/", [make_event()])

        lines = message.split("\n")
        assert lines[0] == "🚨 <b>New Events Found!</b>"
        assert "<b>Sauna Night</b>" in lines
        assert "📅 2025-07-12" in lines
        assert "📍 Helsinki" in lines
        assert "💰 €25" in lines
        assert '🔗 <a href="https://sauna.example/events/night">More Info</a>' in lines
        assert lines[-1] == "Source: https://sauna.example/"

    def test_event_notification_escapes_html(self):
        message = format_event_notification(
            "https://sauna.example/?a=1&b=2",
            [make_event(title="Fish & Chips <Night>", source_link='https://x.example/"q"')],
        )
        assert "<b>Fish &amp; Chips &lt;Night&gt;</b>" in message
        assert 'href="https://x.example/&quot;q&quot;"' in message
        assert "Source: https://sauna.example/?a=1&amp;b=2" in message

    def test_undated_event_has_no_date_line(self):
        message = format_event_notification("https://sauna.example/", [make_event(date_iso=None)])
        assert "📅" not in message

    def test_discovery_notification_is_limited(self):
        links = [{"href": f"https://venue{i}.example/", "title": f"Venue {i}", "reason": "Sauna venue"} for i in range(7)]

        message = format_discovery_notification("https://sauna.example/", 7, links, limit=5)

        assert message.startswith("🔍 <b>Discovered 7 new site(s) from https://sauna.example/!</b>")
        assert "• Venue 4\n  Sauna venue" in message
        assert "Venue 5" not in message


@pytest.mark.unit
class TestTelegramNotifier:
    @pytest.mark.asyncio
    async def test_send_posts_html_message(self):
        notifier = TelegramNotifier(NotifierConfig(bot_token="123:abc", chat_id="42"))
        with aioresponses() as mocked:
            mocked.post(SEND_URL, status=200, payload={"ok": True})
            assert await notifier.send(None, "<b>hello</b>")
            payload = mocked.requests[("POST", URL(SEND_URL))][0].kwargs["json"]
        await notifier.close()

        assert payload == {
            "chat_id": "42",
            "text": "<b>hello</b>",
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }

    @pytest.mark.asyncio
    async def test_explicit_channel_overrides_default_chat(self):
        notifier = TelegramNotifier(NotifierConfig(bot_token="123:abc", chat_id="42"))
        with aioresponses() as mocked:
            mocked.post(SEND_URL, status=200, payload={"ok": True})
            await notifier.send("-100777", "hello")
            payload = mocked.requests[("POST", URL(SEND_URL))][0].kwargs["json"]
        await notifier.close()

        assert payload["chat_id"] == "-100777"

    @pytest.mark.asyncio
    async def test_long_message_is_sent_in_parts(self):
        events = [make_event(title=f"Sauna Night {i}", summary=" ".join(["löyly"] * 120)) for i in range(12)]
        message = format_event_notification("https://sauna.example/", events)
        notifier = TelegramNotifier(NotifierConfig(bot_token="123:abc", chat_id="42"))
        with aioresponses() as mocked:
            mocked.post(SEND_URL, status=200, payload={"ok": True}, repeat=True)
            assert await notifier.send(None, message)
            texts = [call.kwargs["json"]["text"] for call in mocked.requests[("POST", URL(SEND_URL))]]
        await notifier.close()

        assert texts == split_message(message)
        assert len(texts) > 1
        assert all(len(text) <= 4096 for text in texts)

    @pytest.mark.asyncio
    async def test_failed_part_stops_sending(self):
        notifier = TelegramNotifier(NotifierConfig(bot_token="123:abc", chat_id="42"))
        with aioresponses() as mocked:
            mocked.post(SEND_URL, status=400, body="Bad Request")
            assert await notifier.send(None, "\n\n".join(["x" * 3000, "y" * 3000])) is False
            assert len(mocked.requests[("POST", URL(SEND_URL))]) == 1
        await notifier.close()

    @pytest.mark.asyncio
    async def test_rejected_message_returns_false(self):
        notifier = TelegramNotifier(NotifierConfig(bot_token="123:abc", chat_id="42"))
        with aioresponses() as mocked:
            mocked.post(SEND_URL, status=400, body="Bad Request: can't parse entities")
            assert await notifier.send(None, "<b>broken") is False
        await notifier.close()

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self):
        notifier = TelegramNotifier(NotifierConfig(bot_token="123:abc", chat_id="42"))
        with aioresponses() as mocked:
            mocked.post(SEND_URL, exception=aiohttp.ClientConnectionError("down"))
            assert await notifier.send(None, "hello") is False
        await notifier.close()

    @pytest.mark.asyncio
    async def test_unconfigured_notifier_is_a_no_op(self):
        notifier = TelegramNotifier(NotifierConfig())
        assert not notifier.enabled
        with aioresponses() as mocked:
            assert await notifier.send(None, "hello") is False
            assert mocked.requests == {}
        await notifier.close()


@pytest.mark.unit
class TestSplitMessage:
    def test_short_message_is_unchanged(self):
        assert split_message("<b>hello</b>") == ["<b>hello</b>"]

    def test_parts_keep_tags_balanced(self):
        events = [make_event(title=f"Sauna Night {i}", summary=" ".join(["löyly"] * 60)) for i in range(12)]
        message = format_event_notification("https://sauna.example/", events)

        parts = split_message(message, limit=1000)

        assert len(parts) > 1
        for part in parts:
            assert len(part) <= 1000
            assert part.count("<b>") == part.count("</b>")
            assert part.count("<a ") == part.count("</a>")
        joined = "\n\n".join(parts)
        assert all(f"<b>Sauna Night {i}</b>" in joined for i in range(12))
        assert parts[-1].endswith("Source: https://sauna.example/")

    def test_oversized_line_is_cut_as_plain_text(self):
        line = "<b>" + "Fish &amp; Chips " * 10 + "</b>"

        assert split_message(line, limit=42) == ["Fish &amp; Chips Fish &amp; Chips Fish …"]
