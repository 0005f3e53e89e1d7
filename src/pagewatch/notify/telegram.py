"""
Telegram delivery and message formatting.
"""

from __future__ import annotations

import asyncio
import re
from html import escape
from typing import Any, Dict, Iterable, List, Optional, Sequence

import aiohttp
import structlog

from pagewatch.config.config import NotifierConfig
from pagewatch.protocols import Event

logger = structlog.get_logger(__name__)

# Telegram rejects messages longer than this.
MAX_MESSAGE_LENGTH = 4096


def format_event_notification(source_url: str, events: Sequence[Event]) -> str:
    """HTML message announcing new upcoming events found on one page."""
    lines = ["🚨 <b>New Events Found!</b>", ""]
    for event in events:
        lines.append(f"<b>{escape(event.title)}</b>")
        if event.date_iso:
            lines.append(f"📅 {escape(event.date_iso)}")
        if event.location:
            lines.append(f"📍 {escape(event.location)}")
        if event.price_info:
            lines.append(f"💰 {escape(event.price_info)}")
        if event.summary:
            lines.append(escape(event.summary))
        if event.source_link:
            lines.append(f'🔗 <a href="{escape(event.source_link, quote=True)}">More Info</a>')
        lines.append("")
    lines.append(f"Source: {escape(source_url)}")
    return "\n".join(lines)


def format_discovery_notification(source_url: str, new_count: int, links: Iterable[Dict[str, Any]], limit: int = 5) -> str:
    """HTML message announcing links discovered on a page."""
    entries: List[str] = []
    for link in list(links)[:limit]:
        title = escape(str(link.get("title") or link.get("href") or ""))
        reason = escape(str(link.get("reason") or ""))
        entries.append(f"• {title}\n  {reason}" if reason else f"• {title}")
    header = f"🔍 <b>Discovered {new_count} new site(s) from {escape(source_url)}!</b>"
    return header + "\n\n" + "\n\n".join(entries)


_TAG = re.compile(r"<[^>]+>")
_PARTIAL_ENTITY = re.compile(r"&[#\w]*$")


def _cut_plain(line: str, limit: int) -> str:
    """Cut an oversized line as plain text without splitting an HTML entity."""
    text = _TAG.sub("", line)
    if len(text) <= limit:
        return text
    return _PARTIAL_ENTITY.sub("", text[: limit - 1]) + "…"


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """
    Split an HTML message into parts Telegram accepts.

    Parts break between blank-line separated blocks, then between lines, so
    every tag opened in a part is closed in the same part.
    """
    if len(text) <= limit:
        return [text]

    pieces: List[str] = []
    for block in text.split("\n\n"):
        if len(block) <= limit:
            pieces.append(block)
            continue
        pieces.extend(line if len(line) <= limit else _cut_plain(line, limit) for line in block.split("\n"))

    parts: List[str] = []
    current = ""
    for piece in pieces:
        candidate = f"{current}\n\n{piece}" if current else piece
        if len(candidate) <= limit:
            current = candidate
            continue
        if current:
            parts.append(current)
        current = piece
    if current:
        parts.append(current)
    return parts


class TelegramNotifier:
    """Best-effort Telegram Bot API sender. Never raises."""

    def __init__(self, config: Optional[NotifierConfig] = None, session: Optional[aiohttp.ClientSession] = None):
        self.config = config or NotifierConfig()
        self.session = session
        self._owns_session = session is None

    @property
    def enabled(self) -> bool:
        return bool(self.config.bot_token and self.config.chat_id)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.config.timeout))
            self._owns_session = True
        return self.session

    async def send(self, channel: Optional[str], text: str) -> bool:
        """
        Send a message, split into several when it exceeds Telegram's limit.

        Args:
            channel: Chat id; the configured default chat when None
            text: HTML-formatted message

        Returns:
            True if Telegram accepted every part
        """
        token = self.config.bot_token
        chat_id = channel or self.config.chat_id
        if not token or not chat_id:
            logger.info("Telegram not configured, skipping notification")
            return False

        url = f"{self.config.api_url}{token}/sendMessage"
        parts = split_message(text)
        for index, part in enumerate(parts):
            if not await self._post(url, chat_id, part):
                logger.warning("Notification incomplete", chat_id=chat_id, sent_parts=index, parts=len(parts))
                return False

        logger.info("Notification sent", chat_id=chat_id, chars=len(text), parts=len(parts))
        return True

    async def _post(self, url: str, chat_id: str, text: str) -> bool:
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            session = await self._get_session()
            async with session.post(url, json=payload) as response:
                if response.status >= 400:
                    body = await response.text()
                    logger.warning("Telegram rejected message", status=response.status, body=body[:200])
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Telegram send failed", error=str(e))
            return False
        return True

    async def close(self) -> None:
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None
