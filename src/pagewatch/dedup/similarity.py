"""
Title similarity used by the fuzzy deduplication layer.
"""

from __future__ import annotations

from rapidfuzz.distance import Levenshtein


def title_similarity(a: str, b: str) -> float:
    """1 - levenshtein(a, b) / max(len(a), len(b)) over lowercased titles."""
    return Levenshtein.normalized_similarity(a.lower(), b.lower())


def titles_match(a: str, b: str, threshold: float = 0.8) -> bool:
    """
    True if two titles name the same event.

    Containment either way matches outright ("Sauna Night" in
    "Sauna Night 2025"); otherwise the similarity must exceed the threshold.
    """
    la, lb = a.lower().strip(), b.lower().strip()
    if not la or not lb:
        return False
    if la in lb or lb in la:
        return True
    return title_similarity(la, lb) > threshold
