"""
Validation and repair of raw extractor output.

The extractor answers with loosely-typed JSON. This module is the single
boundary where that JSON becomes strict `Finding` models:

- findings without a title are dropped, siblings continue
- an empty or "null" link becomes the source page URL
- a summary below the minimum word count is rebuilt from the other fields
- missing price category, location and date text get placeholders
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from pagewatch.protocols import ExtractionResult, Finding, FindingKind

logger = structlog.get_logger(__name__)

PRICE_PLACEHOLDER = "Contact for pricing"
LOCATION_PLACEHOLDER = "See website"
DATE_PLACEHOLDER = "Date TBA"

KIND_LABELS: Dict[FindingKind, str] = {
    FindingKind.EVENT: "Event",
    FindingKind.COURSE: "Training course",
    FindingKind.WORKSHOP: "Workshop",
    FindingKind.OFFER: "Special offer",
    FindingKind.NEWS: "Announcement",
}

_CODE_FENCE = re.compile(r"```json|```")
_NULLISH = {"", "null", "none", "undefined"}


def strip_code_fences(raw: str) -> str:
    return _CODE_FENCE.sub("", raw).strip()


def parse_payload(raw: str) -> Optional[Dict[str, Any]]:
    """Parse extractor output into a JSON object, or None if it is not one."""
    try:
        payload = json.loads(strip_code_fences(raw))
    except (TypeError, ValueError):
        logger.warning("Extractor returned non-JSON output", preview=str(raw)[:200])
        return None
    if not isinstance(payload, dict):
        logger.warning("Extractor returned JSON that is not an object", type=type(payload).__name__)
        return None
    return payload


def has_content(payload: Optional[Dict[str, Any]]) -> bool:
    """True if a parsed payload carries any finding or insight."""
    if not payload:
        return False
    return any(isinstance(payload.get(key), list) and payload[key] for key in ("future_events", "past_events", "insights"))


class RawFinding(BaseModel):
    """One finding as the extractor reported it. Every field is optional."""

    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    type: Optional[str] = None
    summary: Optional[str] = None
    price: Optional[str] = None
    price_info: Optional[str] = None
    location: Optional[str] = None
    registration_info: Optional[str] = None
    date_iso: Optional[str] = None
    date_text: Optional[str] = None
    is_past: Optional[bool] = None
    link: Optional[str] = None

    @field_validator(
        "title",
        "type",
        "summary",
        "price",
        "price_info",
        "location",
        "registration_info",
        "date_iso",
        "date_text",
        "link",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            v = str(v)
        if not isinstance(v, str):
            return None
        v = v.strip()
        return None if v.lower() in _NULLISH else v

    @field_validator("is_past", mode="before")
    @classmethod
    def lenient_bool(cls, v: Any) -> Optional[bool]:
        if v is None:
            return None
        if isinstance(v, str):
            return v.strip().lower() in ("true", "yes", "1")
        return bool(v)


def word_count(text: Optional[str]) -> int:
    return len((text or "").split())


def _kind(raw_type: Optional[str]) -> FindingKind:
    if raw_type:
        try:
            return FindingKind(raw_type.upper())
        except ValueError:
            pass
    return FindingKind.EVENT


def build_summary(
    kind: FindingKind,
    title: str,
    location: str,
    date_text: str,
    price_text: Optional[str],
    price_category: str,
    registration_state: Optional[str],
) -> str:
    """Templated summary used when the extractor's own summary is too thin."""
    parts = [f'{KIND_LABELS[kind]}: "{title}".']

    if location and location != LOCATION_PLACEHOLDER:
        parts.append(f"Taking place in {location}.")
    if date_text and date_text != DATE_PLACEHOLDER:
        parts.append(f"Scheduled for {date_text}.")

    if price_text:
        parts.append(f"Price: {price_text}.")
    elif price_category == "Free":
        parts.append("This is a free event.")

    if registration_state == "Sold Out":
        parts.append("Currently sold out - check for waitlist.")
    elif registration_state == "Open":
        parts.append("Registration is currently open.")

    parts.append("Visit the source link for complete details and registration.")
    return " ".join(parts)


def normalize_finding(
    item: Any, source_url: str, *, default_past: bool = False, min_summary_words: int = 30
) -> Optional[Finding]:
    """
    Turn one raw finding into a `Finding`, or None if it must be dropped.

    Args:
        item: One element of `future_events` or `past_events`
        source_url: Page URL used when the finding has no link of its own
        default_past: `is_past` value when the extractor left the flag out
        min_summary_words: Summaries shorter than this are rebuilt

    Returns:
        The repaired finding, or None when it has no title or is malformed
    """
    if not isinstance(item, dict):
        logger.debug("Dropping non-object finding", type=type(item).__name__)
        return None
    try:
        raw = RawFinding.model_validate(item)
    except ValidationError as e:
        logger.warning("Dropping malformed finding", errors=e.error_count())
        return None

    if not raw.title:
        logger.debug("Dropping finding without title")
        return None

    kind = _kind(raw.type)
    price_category = raw.price_info or PRICE_PLACEHOLDER
    location = raw.location or LOCATION_PLACEHOLDER
    date_text = raw.date_text or DATE_PLACEHOLDER

    summary = raw.summary or ""
    words = word_count(summary)
    if words < min_summary_words:
        logger.info("Rebuilding short summary", title=raw.title, words=words)
        summary = build_summary(kind, raw.title, location, date_text, raw.price, price_category, raw.registration_info)

    return Finding(
        title=raw.title,
        kind=kind,
        summary=summary,
        price_text=raw.price,
        price_category=price_category,
        location=location,
        registration_state=raw.registration_info,
        date_iso=raw.date_iso,
        date_text=date_text,
        is_past=default_past if raw.is_past is None else raw.is_past,
        link=raw.link or source_url,
    )


def validate_response(payload: Optional[Dict[str, Any]], source_url: str, *, min_summary_words: int = 30) -> ExtractionResult:
    """Validate a parsed extractor payload into an `ExtractionResult`."""
    payload = payload or {}
    findings: List[Finding] = []
    upcoming = 0
    past = 0

    for key, default_past in (("future_events", False), ("past_events", True)):
        items = payload.get(key)
        if not isinstance(items, list):
            continue
        for item in items:
            finding = normalize_finding(
                item, source_url, default_past=default_past, min_summary_words=min_summary_words
            )
            if finding is None:
                continue
            findings.append(finding)
            if default_past:
                past += 1
            else:
                upcoming += 1

    raw_insights = payload.get("insights")
    insights = [str(i) for i in raw_insights if i] if isinstance(raw_insights, list) else []
    if not insights:
        insights = [
            f"Analyzed content from {source_url}",
            f"Found {upcoming} upcoming and {past} past events",
        ]

    site_category = payload.get("site_category")
    return ExtractionResult(
        site_category=site_category if isinstance(site_category, str) and site_category else "Unknown",
        findings=findings,
        insights=insights,
    )


def degraded_result(source_url: str, message: str) -> ExtractionResult:
    """Result returned when extraction failed for a reason other than rate limiting."""
    return ExtractionResult(
        site_category="Analysis failed",
        findings=[],
        insights=[f"Error analyzing {source_url}: {message}"],
        degraded=True,
    )
