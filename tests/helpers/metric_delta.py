"""
Helpers for asserting how the code under test moved a Prometheus metric.
"""

from contextlib import contextmanager
from typing import Any, Dict, Optional


def _current(metric: Any, labels: Optional[Dict[str, str]]) -> float:
    target = metric.labels(**labels) if labels else metric
    if not hasattr(target, "_value"):
        raise ValueError(f"Metric {metric} doesn't have a _value attribute")
    return target._value.get()


@contextmanager
def metric_delta(metric, expected_delta=1, labels=None):
    """
    Assert that a counter moves by exactly `expected_delta`.

    Usage:
        with metric_delta(METRICS["dedup_outcomes"], labels={"layer": "exact"}):
            await index.admit(finding, page, run_date)
    """
    initial_value = _current(metric, labels)
    yield
    actual_delta = _current(metric, labels) - initial_value
    if actual_delta != expected_delta:
        raise AssertionError(
            f"Expected metric to change by {expected_delta}, but it changed by {actual_delta}"
        )


def get_histogram_count(histogram):
    """Current observation count of an unlabeled histogram."""
    for family in histogram.collect():
        for sample in family.samples:
            if sample.name.endswith("_count"):
                return sample.value
    return 0.0


@contextmanager
def histogram_observes(histogram, min_observations=1):
    initial_count = get_histogram_count(histogram)
    yield
    observed = get_histogram_count(histogram) - initial_count
    if observed < min_observations:
        raise AssertionError(f"Expected at least {min_observations} histogram observations, got {observed}")
