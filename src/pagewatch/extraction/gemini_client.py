"""
Structured extractor backed by the Gemini generateContent API.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
import structlog
from httpx import AsyncClient, HTTPError

from pagewatch.config.config import ExtractionConfig
from pagewatch.exceptions import ConfigurationError, ExtractorError, RateLimitError
from pagewatch.protocols import ExtractionContext

logger = structlog.get_logger(__name__)


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class GeminiExtractor:
    """
    Sends a task prompt plus page text to Gemini and returns the raw answer.

    The client is created lazily; pass one in to share a connection pool or
    to inject a mock transport.
    """

    def __init__(self, config: Optional[ExtractionConfig] = None, client: AsyncClient | None = None) -> None:
        self.config = config or ExtractionConfig()
        self._client = client
        self._owns_client = client is None

    @property
    def url(self) -> str:
        return f"{self.config.endpoint.rstrip('/')}/{self.config.model}:generateContent"

    def _get_client(self) -> AsyncClient:
        if self._client is None:
            self._client = AsyncClient(timeout=httpx.Timeout(self.config.request_timeout, connect=10.0))
        return self._client

    def build_payload(self, text: str, task_prompt: str) -> Dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": f'{task_prompt}\n\nUser Message:\n"{text}"\n\nYour Response:'}]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_output_tokens,
            },
        }

    async def extract(self, text: str, task_prompt: str, context: ExtractionContext) -> str:
        """
        Run one extraction request.

        Returns:
            The model's text answer, "{}" when the response carries none

        Raises:
            RateLimitError: HTTP 429
            ExtractorError: Any other transport or API failure
        """
        if not self.config.api_key:
            raise ConfigurationError("Extraction API key is not configured (PAGEWATCH_EXTRACTION__API_KEY)")

        try:
            response = await self._get_client().post(
                self.url,
                params={"key": self.config.api_key},
                json=self.build_payload(text, task_prompt),
            )
        except HTTPError as e:
            raise ExtractorError(f"Extractor request failed: {e}") from e

        if response.status_code == 429:
            logger.warning("Extractor rate limited", url=context.source_url)
            raise RateLimitError(retry_after=_retry_after(response))
        if response.status_code >= 400:
            raise ExtractorError(f"Extractor API error: {response.status_code} {response.reason_phrase}")

        try:
            data = response.json()
        except ValueError as e:
            raise ExtractorError("Extractor API returned a non-JSON body") from e

        try:
            answer = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            logger.warning("Extractor response had no candidate text", url=context.source_url)
            return "{}"
        return answer.strip() if isinstance(answer, str) and answer.strip() else "{}"

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
