"""
Extraction orchestrator: page text in, validated findings out.

Retry policy:
- An empty or unparseable response is retried with exponential backoff
  (2s, 4s) up to `max_attempts` total attempts; after the last attempt the
  empty result is accepted.
- Any extractor failure other than rate limiting is retried on the same
  schedule; when attempts run out a degraded result is returned.
- A rate limit propagates at once so the run loop can back off.
"""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from pagewatch.config.config import ExtractionConfig
from pagewatch.exceptions import ConfigurationError, RateLimitError
from pagewatch.observability import increment
from pagewatch.protocols import ExtractionContext, ExtractionResult, ExtractorProtocol

from .prompts import build_deep_analysis_prompt
from .validation import degraded_result, has_content, parse_payload, validate_response

logger = structlog.get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def _is_retryable_error(exc: BaseException) -> bool:
    return isinstance(exc, Exception) and not isinstance(exc, (RateLimitError, ConfigurationError))


def _is_empty(payload: Optional[Dict[str, Any]]) -> bool:
    return not has_content(payload)


class ExtractionOrchestrator:
    """Drives the extractor with bounded retries and validates its output."""

    def __init__(
        self,
        extractor: ExtractorProtocol,
        config: Optional[ExtractionConfig] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.extractor = extractor
        self.config = config or ExtractionConfig()
        self._sleep = sleep

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(multiplier=self.config.backoff_base_seconds, max=self.config.backoff_max_seconds),
            retry=retry_if_result(_is_empty) | retry_if_exception(_is_retryable_error),
            before_sleep=self._log_retry,
            sleep=self._sleep,
        )

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        delay = retry_state.next_action.sleep if retry_state.next_action else None
        if outcome is not None and outcome.failed:
            logger.warning(
                "Extraction attempt failed, retrying",
                attempt=retry_state.attempt_number,
                delay=delay,
                error=str(outcome.exception()),
            )
        else:
            logger.warning("Empty extractor response, retrying", attempt=retry_state.attempt_number, delay=delay)

    async def _attempt(self, text: str, prompt: str, context: ExtractionContext) -> Optional[Dict[str, Any]]:
        try:
            raw = await self.extractor.extract(text, prompt, context)
        except RateLimitError:
            increment("extraction_attempts", labels={"outcome": "rate_limited"})
            raise
        except Exception:
            increment("extraction_attempts", labels={"outcome": "error"})
            raise

        payload = parse_payload(raw)
        increment("extraction_attempts", labels={"outcome": "ok" if has_content(payload) else "empty"})
        return payload

    async def extract(self, text: str, url: str, *, language: str, current_date: date) -> ExtractionResult:
        """
        Extract findings from page text.

        Args:
            text: Page text; capped at `max_text_chars`
            url: Source page URL, used in the prompt and as fallback link
            language: Output language for every generated field
            current_date: Reference date for past/future classification

        Returns:
            Validated ExtractionResult; degraded when the extractor kept failing

        Raises:
            RateLimitError: The extractor signalled backpressure
            ConfigurationError: The extractor is not configured
        """
        increment("extraction_calls")
        safe_text = text[: self.config.max_text_chars]
        prompt = build_deep_analysis_prompt(url, language, current_date)
        context = ExtractionContext(language=language, current_date=current_date, source_url=url)

        try:
            payload = await self._retrying()(self._attempt, safe_text, prompt, context)
        except RetryError as e:
            last = e.last_attempt
            if last.failed:
                error = last.exception()
                logger.error("Extraction failed after retries", url=url, attempts=last.attempt_number, error=str(error))
                return degraded_result(url, str(error))
            logger.warning("Accepting empty extraction after retries", url=url, attempts=last.attempt_number)
            payload = last.result()

        result = validate_response(payload, url, min_summary_words=self.config.min_summary_words)
        logger.info(
            "Extraction complete",
            url=url,
            site_category=result.site_category,
            findings=len(result.findings),
            upcoming=len(result.future_findings),
        )
        return result
