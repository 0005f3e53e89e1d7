"""
Core contracts and records for pagewatch.

Architecture Overview:
- Fetcher turns a URL into page text plus outbound links
- Segmenter and Fingerprinter reduce the text to a stable snapshot
- ChangeClassifier decides whether the snapshot changed enough to extract
- ExtractionOrchestrator turns page text into validated findings
- EventIndex decides whether a finding is a new event
- Pipeline drives all of the above one page at a time

The external collaborators (fetcher, extractor, notifier, store) are declared
here as Protocols so the pipeline can be exercised with in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

# ============================================================================
# Enums
# ============================================================================


class RenderMode(Enum):
    """How a page must be retrieved."""

    STATIC = "static"
    DYNAMIC = "dynamic"


class ChangeState(Enum):
    """Outcome of comparing a fresh snapshot with the stored one."""

    INITIAL = "initial"
    IDENTICAL = "identical"
    INSIGNIFICANT = "insignificant"
    SIGNIFICANT = "significant"


class AdmissionStatus(Enum):
    """Outcome of submitting a finding to the event index."""

    NEW = "new"
    EXACT_DUPLICATE = "exact_duplicate"
    FUZZY_DUPLICATE = "fuzzy_duplicate"


class FindingKind(Enum):
    """Kinds of findings the extractor is asked to report."""

    EVENT = "EVENT"
    COURSE = "COURSE"
    WORKSHOP = "WORKSHOP"
    OFFER = "OFFER"
    NEWS = "NEWS"


# ============================================================================
# Persisted records
# ============================================================================


@dataclass
class TrackedPage:
    """A monitored page together with its last stored snapshot."""

    id: int
    url: str
    last_fingerprint: Optional[str] = None
    last_segments: List[str] = field(default_factory=list)
    error_count: int = 0
    active: bool = True
    render_mode: RenderMode = RenderMode.STATIC


@dataclass(frozen=True)
class Event:
    """A validated, deduplicated finding. Immutable once stored."""

    id: int
    page_id: int
    title: str
    summary: str
    date_iso: Optional[str]
    price_info: str
    location: str
    source_link: str
    content_hash: str
    is_future: bool
    created_at: Optional[datetime] = None


@dataclass
class ChangeLogEntry:
    """Audit record of the raw findings seen for a page. Never read for decisions."""

    page_id: int
    timestamp: datetime
    raw_findings_json: str


@dataclass
class Telemetry:
    """Aggregate counters for one run of the monitoring loop."""

    pages_checked: int = 0
    changes_found: int = 0
    extraction_calls: int = 0
    notifications_sent: int = 0
    errors: int = 0
    duration_ms: int = 0


# ============================================================================
# Transient records
# ============================================================================


class Finding(BaseModel):
    """A validated extractor finding, ready for deduplication."""

    title: str
    kind: FindingKind = FindingKind.EVENT
    summary: str = ""
    price_text: Optional[str] = None
    price_category: str = "Contact for pricing"
    location: str = "See website"
    registration_state: Optional[str] = None
    date_iso: Optional[str] = None
    date_text: str = "Date TBA"
    is_past: bool = False
    link: str = ""

    @property
    def price_info(self) -> str:
        return self.price_text or self.price_category


class ExtractionResult(BaseModel):
    """Output of one orchestrated extraction over a page."""

    site_category: str = "Unknown"
    findings: List[Finding] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)
    degraded: bool = False

    @property
    def future_findings(self) -> List[Finding]:
        return [f for f in self.findings if not f.is_past]


@dataclass(frozen=True)
class Link:
    """An outbound link found on a page."""

    href: str
    text: str


@dataclass
class FetchResult:
    """Text and outbound links of a fetched page."""

    text: str
    links: List[Link] = field(default_factory=list)
    method: str = "fetch"


@dataclass(frozen=True)
class ExtractionContext:
    """Per-call parameters handed to the extractor alongside the prompt."""

    language: str
    current_date: date
    source_url: str


@dataclass
class ChangeDecision:
    """Result of the two-tier change test for one page."""

    state: ChangeState
    fingerprint: str
    segments: List[str]
    similarity: Optional[float] = None

    @property
    def has_change(self) -> bool:
        return self.state in (ChangeState.INITIAL, ChangeState.SIGNIFICANT)


@dataclass
class Admission:
    """What the event index did with one finding."""

    status: AdmissionStatus
    identity_hash: str
    finding: Finding
    event: Optional[Event] = None
    matched_event_id: Optional[int] = None

    @property
    def notify(self) -> bool:
        return self.status is AdmissionStatus.NEW and self.event is not None and self.event.is_future


# ============================================================================
# Collaborator protocols
# ============================================================================


class FetcherProtocol(Protocol):
    """Retrieves a page. Raises FetchError on any failure."""

    async def fetch(self, url: str, render_mode: RenderMode = RenderMode.STATIC) -> FetchResult:
        ...


class ExtractorProtocol(Protocol):
    """Structured extractor. Returns raw JSON text; raises RateLimitError or ExtractorError."""

    async def extract(self, text: str, task_prompt: str, context: ExtractionContext) -> str:
        ...


class NotifierProtocol(Protocol):
    """Best-effort message delivery. Returns False instead of raising."""

    async def send(self, channel: Optional[str], text: str) -> bool:
        ...


class EventStoreProtocol(Protocol):
    """The persistence operations the event index depends on."""

    async def event_exists(self, content_hash: str) -> bool:
        ...

    async def find_similar_event(self, date_iso: Optional[str], title: str, threshold: float = 0.8) -> Optional[int]:
        ...

    async def add_event(self, record: Dict[str, Any]) -> Optional[Event]:
        ...
