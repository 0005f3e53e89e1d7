"""
Hybrid page fetcher: plain HTTP first, headless browser as fallback.

Static pages are fetched with aiohttp and cleaned with selectolax. Pages that
fail, answer with an error status, or return too little HTML to be real
content are rendered with Playwright instead (optional `render` extra).
Dynamic pages go straight to the browser.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, List, Optional
from urllib.parse import urljoin, urlparse

import aiohttp
import structlog
from selectolax.parser import HTMLParser

from pagewatch.config.config import FetcherConfig
from pagewatch.exceptions import FetchError
from pagewatch.protocols import FetchResult, Link, RenderMode

logger = structlog.get_logger(__name__)

NOISE_SELECTORS = "script, style, nav, footer, iframe, noscript, header, aside, .cookie-banner, .popup, .modal"

_BLOCK_TAG = re.compile(
    r"<\s*/?\s*(?:div|p|li|ul|ol|h[1-6]|tr|td|th|table|article|section|main|blockquote|dl|dd|dt)(?:\s[^>]*)?/?>|<\s*br\s*/?\s*>",
    re.I,
)
_WHITESPACE = re.compile(r"\s+")

_ACCEPT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

# Runs in the page: scroll to trigger lazy loading, drop noise, return text.
_RENDER_SCRIPT = """
async (selectors) => {
    for (let i = 0; i < 10 && window.scrollY + window.innerHeight < document.body.scrollHeight; i++) {
        window.scrollBy(0, 300);
        await new Promise((r) => setTimeout(r, 100));
    }
    window.scrollTo(0, 0);
    document.querySelectorAll(selectors).forEach((el) => el.remove());
    return document.body ? document.body.innerText : "";
}
"""

_LINKS_SCRIPT = """
() => Array.from(document.querySelectorAll("a")).map((a) => ({href: a.href, text: (a.innerText || "").trim()}))
"""


def html_to_text(html: str) -> str:
    """
    Visible text of an HTML document, one block element per line.

    Noise elements (scripts, navigation, footers, cookie banners, modals)
    are removed first.
    """
    tree = HTMLParser(html)
    for node in tree.css(NOISE_SELECTORS):
        node.decompose()

    root = tree.body if tree.body is not None else tree.root
    if root is None:
        return ""
    flattened = _BLOCK_TAG.sub("\n", _WHITESPACE.sub(" ", root.html or ""))
    reparsed = HTMLParser(flattened)
    node = reparsed.body if reparsed.body is not None else reparsed.root
    text = node.text(separator=" ") if node is not None else ""

    lines = (_WHITESPACE.sub(" ", line).strip() for line in text.split("\n"))
    return "\n".join(line for line in lines if line)


def _keep_link(href: str, text: str, base_url: str, max_text: int) -> Optional[Link]:
    if not href or len(text) <= 2:
        return None
    absolute = urljoin(base_url, href)
    if urlparse(absolute).scheme not in ("http", "https"):
        return None
    return Link(href=absolute, text=text[:max_text])


def extract_links(html: str, base_url: str, max_text: int = 100) -> List[Link]:
    """Outbound links with more than two characters of anchor text, resolved to absolute URLs."""
    tree = HTMLParser(html)
    links: List[Link] = []
    for node in tree.css("a"):
        href = (node.attributes.get("href") or "").strip()
        text = _WHITESPACE.sub(" ", node.text() or "").strip()
        link = _keep_link(href, text, base_url, max_text)
        if link is not None:
            links.append(link)
    return links


class PageFetcher:
    """Retrieves page text and links for the run loop."""

    def __init__(self, config: Optional[FetcherConfig] = None, session: Optional[aiohttp.ClientSession] = None):
        self.config = config or FetcherConfig()
        self.session = session
        self._owns_session = session is None

    async def initialize(self) -> None:
        """Initialize the HTTP client session."""
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self.session = aiohttp.ClientSession(
                timeout=timeout, headers={"User-Agent": self.config.user_agent, **_ACCEPT_HEADERS}
            )
            self._owns_session = True
            logger.info("HTTP client session initialized")

    async def close(self) -> None:
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None

    async def __aenter__(self) -> PageFetcher:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def fetch(self, url: str, render_mode: RenderMode = RenderMode.STATIC) -> FetchResult:
        """
        Fetch a page.

        Raises:
            FetchError: Neither the static fetch nor the browser produced content
        """
        if render_mode is RenderMode.DYNAMIC:
            return await self.render(url)

        try:
            return await self.fetch_static(url)
        except FetchError as e:
            if not self.config.render_fallback:
                raise
            logger.warning("Static fetch failed, falling back to browser", url=url, error=str(e))
            return await self.render(url)

    async def fetch_static(self, url: str) -> FetchResult:
        await self.initialize()
        assert self.session is not None

        try:
            async with self.session.get(url) as response:
                if response.status >= 400:
                    raise FetchError(url, f"Fetch failed: {response.status} {response.reason}", status=response.status)
                html = await response.text(errors="replace")
        except aiohttp.ClientError as e:
            raise FetchError(url, f"Fetch failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise FetchError(url, f"Fetch timed out after {self.config.timeout}s") from e

        if len(html) < self.config.min_content_length:
            raise FetchError(url, "Content too short, likely blocked or rendered client-side")

        text = html_to_text(html)
        links = extract_links(html, url, self.config.max_link_text)
        logger.debug("Fetched page", url=url, chars=len(text), links=len(links))
        return FetchResult(text=text, links=links, method="fetch")

    async def render(self, url: str) -> FetchResult:
        """Render a page in headless Chromium."""
        try:
            from playwright.async_api import Error as PlaywrightError
            from playwright.async_api import async_playwright
        except ImportError as e:
            raise FetchError(url, "Browser rendering requires the 'render' extra (playwright)") from e

        timeout_ms = int(self.config.render_timeout * 1000)
        try:
            async with async_playwright() as pw:
                browser = await pw.chromium.launch(headless=True)
                try:
                    page = await browser.new_page(
                        user_agent=self.config.user_agent, viewport={"width": 1280, "height": 800}
                    )
                    await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
                    raw_links = await page.evaluate(_LINKS_SCRIPT)
                    text = await page.evaluate(_RENDER_SCRIPT, NOISE_SELECTORS)
                finally:
                    await browser.close()
        except PlaywrightError as e:
            raise FetchError(url, f"Browser rendering failed: {e}") from e

        links = []
        for item in raw_links or []:
            link = _keep_link(item.get("href") or "", item.get("text") or "", url, self.config.max_link_text)
            if link is not None:
                links.append(link)
        logger.debug("Rendered page", url=url, chars=len(text or ""), links=len(links))
        return FetchResult(text=text or "", links=links, method="browser")
