"""
Page text segmentation for change detection.

Turns raw page text into an ordered list of de-noised, deduplicated
paragraph-level blocks:
- Remove boilerplate noise (cookie notices, copyright lines, newsletter prompts)
- Collapse whitespace inside each block
- Drop blocks shorter than the minimum length
- Keep the first occurrence of every block, in page order

Identical input always yields the identical list, which is what makes the
fingerprint of a page reproducible.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Optional, Pattern, Sequence

from pagewatch.config.config import DEFAULT_NOISE_PATTERNS, DetectionConfig

_LINE_BREAK = re.compile(r"\r\n|\r|\n|\u2028|\u2029")
_WHITESPACE = re.compile(r"\s+")

DEFAULT_MIN_LENGTH = 20


def compile_noise_patterns(patterns: Iterable[str]) -> List[Pattern[str]]:
    return [re.compile(p) for p in patterns]


_DEFAULT_NOISE = compile_noise_patterns(DEFAULT_NOISE_PATTERNS)


def segment_text(
    text: Any,
    *,
    min_length: int = DEFAULT_MIN_LENGTH,
    noise_patterns: Optional[Sequence[Pattern[str]]] = None,
) -> List[str]:
    """
    Split page text into deduplicated blocks.

    Args:
        text: Raw page text; anything that is not a non-empty string yields []
        min_length: Blocks shorter than this many characters are discarded
        noise_patterns: Compiled denylist; defaults to the built-in patterns

    Returns:
        Ordered list of unique blocks
    """
    if not isinstance(text, str) or not text.strip():
        return []

    patterns = _DEFAULT_NOISE if noise_patterns is None else noise_patterns
    seen: dict[str, None] = {}

    for line in _LINE_BREAK.split(text):
        chunk = line
        for pattern in patterns:
            chunk = pattern.sub(" ", chunk)
        chunk = _WHITESPACE.sub(" ", chunk).strip()
        if len(chunk) < min_length:
            continue
        seen.setdefault(chunk, None)

    return list(seen)


class Segmenter:
    """Segmenter bound to a detection configuration."""

    def __init__(self, config: Optional[DetectionConfig] = None) -> None:
        self.config = config or DetectionConfig()
        self.min_length = self.config.min_segment_length
        self.noise_patterns = compile_noise_patterns(self.config.noise_patterns)

    def segment(self, text: Any) -> List[str]:
        return segment_text(text, min_length=self.min_length, noise_patterns=self.noise_patterns)
