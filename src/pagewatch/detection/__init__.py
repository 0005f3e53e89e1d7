"""
Change detection for tracked pages.

Segmenter -> Fingerprinter -> ChangeClassifier.
"""

from .classifier import IMPORTANT_PATTERNS, ChangeClassifier, has_important_changes, jaccard_similarity
from .fingerprint import digest, fingerprint
from .segmenter import Segmenter, segment_text

__all__ = [
    "ChangeClassifier",
    "IMPORTANT_PATTERNS",
    "Segmenter",
    "digest",
    "fingerprint",
    "has_important_changes",
    "jaccard_similarity",
    "segment_text",
]
