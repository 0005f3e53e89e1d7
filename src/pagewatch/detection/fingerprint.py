"""
SHA-256 fingerprints over ordered text sequences.

Each part is length-prefixed before joining, so ["ab", "c"] and ["a", "bc"]
never collide. The same digest backs whole-page change detection and
per-finding identity hashing.
"""

from __future__ import annotations

import hashlib
from typing import Iterable, Sequence

SEPARATOR = "\x1e"


def _frame(parts: Iterable[str]) -> str:
    return SEPARATOR.join(f"{len(part)}:{part}" for part in parts)


def digest(parts: Iterable[str]) -> str:
    """
    Calculate the SHA-256 of an ordered sequence of strings.

    Args:
        parts: Strings to hash, in order

    Returns:
        Lowercase hexadecimal SHA-256 hash
    """
    return hashlib.sha256(_frame(parts).encode("utf-8")).hexdigest()


def fingerprint(segments: Sequence[str]) -> str:
    """Fingerprint of a page snapshot."""
    return digest(segments)
