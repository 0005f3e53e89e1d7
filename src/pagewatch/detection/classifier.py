"""
Two-tier change classification.

1. Fingerprint equality: free, exact.
2. Significance heuristic: an important-pattern delta (dates, prices,
   availability words) always counts; otherwise a change is ignored when the
   token Jaccard similarity of old and new text exceeds the threshold.

Extraction is the expensive, rate-limited step; this module exists to call it
only when the page changed in substance.
"""

from __future__ import annotations

import re
from typing import List, Optional, Pattern, Sequence

import structlog

from pagewatch.config.config import DetectionConfig
from pagewatch.observability import increment
from pagewatch.protocols import ChangeDecision, ChangeState

from .fingerprint import fingerprint

logger = structlog.get_logger(__name__)

IMPORTANT_PATTERNS: List[Pattern[str]] = [
    re.compile(r"\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}"),
    re.compile(r"\d{4}[/.-]\d{1,2}[/.-]\d{1,2}"),
    re.compile(r"€\s?\d+[\d\s,.]*"),
    re.compile(r"\$\s?\d+[\d\s,.]*"),
    re.compile(r"\d+\s?EUR\b", re.IGNORECASE),
    re.compile(r"\b(?:registration|enroll|sign\s?up|book\s?now)\b", re.IGNORECASE),
    re.compile(r"\b(?:sold\s?out|cancelled|postponed|full)\b", re.IGNORECASE),
]

MIN_TOKEN_LENGTH = 4


def has_important_changes(old_text: str, new_text: str) -> bool:
    """True if any important pattern matches a different multiset in the two texts."""
    for pattern in IMPORTANT_PATTERNS:
        if sorted(pattern.findall(old_text)) != sorted(pattern.findall(new_text)):
            return True
    return False


def _tokens(text: str) -> set[str]:
    return {w for w in text.lower().split() if len(w) >= MIN_TOKEN_LENGTH}


def jaccard_similarity(text1: str, text2: str) -> float:
    """Jaccard similarity of the lowercase word sets (words longer than 3 characters)."""
    words1 = _tokens(text1)
    words2 = _tokens(text2)
    union = words1 | words2
    if not union:
        return 1.0
    return len(words1 & words2) / len(union)


class ChangeClassifier:
    """Decides whether a fresh snapshot warrants extraction."""

    def __init__(self, config: Optional[DetectionConfig] = None) -> None:
        self.config = config or DetectionConfig()
        self.threshold = self.config.similarity_threshold

    def classify(
        self,
        old_fingerprint: Optional[str],
        old_segments: Optional[Sequence[str]],
        new_segments: Sequence[str],
    ) -> ChangeDecision:
        """
        Compare the stored snapshot with a fresh one.

        Args:
            old_fingerprint: Fingerprint stored after the previous run, if any
            old_segments: Segments stored after the previous run, if any
            new_segments: Segments of the page as fetched now

        Returns:
            ChangeDecision carrying the new fingerprint and segments
        """
        segments = list(new_segments)
        new_fingerprint = fingerprint(segments)

        if old_fingerprint is not None and new_fingerprint == old_fingerprint:
            decision = ChangeDecision(ChangeState.IDENTICAL, new_fingerprint, segments, similarity=1.0)
        elif old_fingerprint is None or not old_segments:
            decision = ChangeDecision(ChangeState.INITIAL, new_fingerprint, segments)
        else:
            decision = self._classify_difference(old_segments, segments, new_fingerprint)

        increment("change_decisions", labels={"state": decision.state.value})
        return decision

    def _classify_difference(
        self, old_segments: Sequence[str], new_segments: List[str], new_fingerprint: str
    ) -> ChangeDecision:
        old_text = " ".join(old_segments)
        new_text = " ".join(new_segments)

        if has_important_changes(old_text, new_text):
            logger.debug("Important pattern changed", fingerprint=new_fingerprint[:16])
            return ChangeDecision(ChangeState.SIGNIFICANT, new_fingerprint, new_segments)

        similarity = jaccard_similarity(old_text, new_text)
        if similarity > self.threshold:
            logger.info("Minor change ignored", similarity=round(similarity, 4), threshold=self.threshold)
            return ChangeDecision(ChangeState.INSIGNIFICANT, new_fingerprint, new_segments, similarity=similarity)

        return ChangeDecision(ChangeState.SIGNIFICANT, new_fingerprint, new_segments, similarity=similarity)
