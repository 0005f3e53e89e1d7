"""
Two-layer event deduplication: exact identity hash, then fuzzy title match.
"""

from .event_index import EventIndex, is_future_event
from .identity import identity_hash, normalize_title
from .similarity import title_similarity, titles_match

__all__ = [
    "EventIndex",
    "identity_hash",
    "is_future_event",
    "normalize_title",
    "title_similarity",
    "titles_match",
]
