"""
Defines Prometheus metrics for the monitoring pipeline.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

import structlog
from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Histogram as _OrigHistogram
from prometheus_client import start_http_server

if TYPE_CHECKING:
    from pagewatch.config.config import MonitoringConfig

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Duplicate-safe Prometheus metric wrappers
# ---------------------------------------------------------------------------
# Test suites import this module repeatedly; registering the same collector
# name twice raises, so existing collectors are reused.


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[override]
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing  # type: ignore[return-value]

        try:
            return metric_cls(name, documentation, *args, **kwargs)  # type: ignore[call-arg]
        except ValueError:
            return _PROM_REGISTRY._names_to_collectors[name]  # type: ignore[return-value]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)  # type: ignore[assignment]
Histogram = _duplicate_safe_factory(_OrigHistogram)  # type: ignore[assignment]


METRICS: Dict[str, Any] = {
    "pages_checked": Counter(
        "pagewatch_pages_checked_total",
        "Tracked pages visited by the run loop",
    ),
    "change_decisions": Counter(
        "pagewatch_change_decisions_total",
        "Change classifier outcomes",
        ["state"],
    ),
    "extraction_calls": Counter(
        "pagewatch_extraction_calls_total",
        "Orchestrated extractions over changed pages",
    ),
    "extraction_attempts": Counter(
        "pagewatch_extraction_attempts_total",
        "Individual extractor requests, including retries",
        ["outcome"],
    ),
    "dedup_outcomes": Counter(
        "pagewatch_dedup_outcomes_total",
        "Event index decisions",
        ["layer"],
    ),
    "notifications_sent": Counter(
        "pagewatch_notifications_sent_total",
        "Messages delivered to the notifier",
    ),
    "page_errors": Counter(
        "pagewatch_page_errors_total",
        "Page-level failures caught by the run loop",
        ["kind"],
    ),
    "page_duration_seconds": Histogram(
        "pagewatch_page_duration_seconds",
        "Time taken to process one tracked page",
        buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    ),
}


def start_metrics_server(config: MonitoringConfig) -> bool:
    """Start the Prometheus exporter if a port is configured."""
    if config.prometheus_port is None:
        return False
    start_http_server(config.prometheus_port)
    logger.info("Prometheus exporter started", port=config.prometheus_port)
    return True
