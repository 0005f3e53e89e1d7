"""
Identity hashing of findings.
"""

from __future__ import annotations

import re

from pagewatch.detection.fingerprint import digest
from pagewatch.protocols import Finding

_WHITESPACE = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    return _WHITESPACE.sub(" ", title).strip().lower()


def identity_hash(finding: Finding) -> str:
    """Stable hash over normalized title, ISO date and price text."""
    return digest([normalize_title(finding.title), finding.date_iso or "", finding.price_text or ""])
