"""
memo_sdk.tier0_core.metrics
────────────────────────────
Counters, gauges, and histograms describing memoizer behaviour, with the
standard service/env labels. Exposed through whatever Prometheus registry
the host process already serves.

Minimal stack: prometheus-client
Configure via: APP_NAME, APP_ENV (label values)
"""
from __future__ import annotations

import os
from typing import Any, Callable

from prometheus_client import Counter, Gauge, Histogram
from prometheus_client.metrics import MetricWrapperBase

# Standard labels applied to every metric
_DEFAULT_LABELS = ["service", "env"]
_SERVICE = os.getenv("APP_NAME", "memo")
_ENV = os.getenv("APP_ENV", "development")

_DURATION_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


def _labelled(
    kind: type[MetricWrapperBase],
    name: str,
    description: str,
    labels: list[str] | None,
    **options: Any,
) -> Callable[..., Any]:
    metric = kind(name, description, _DEFAULT_LABELS + (labels or []), **options)

    def child(**extra_labels: str) -> Any:
        return metric.labels(service=_SERVICE, env=_ENV, **extra_labels)

    child.metric = metric  # type: ignore[attr-defined]
    return child


def counter(name: str, description: str, labels: list[str] | None = None) -> Callable[..., Counter]:
    """
    Counter with the standard labels. Returns a function that yields the
    labelled child.

    Usage:
        lookups = counter("memo_lookups_total", "Cache lookups", ["outcome"])
        lookups(outcome="hit").inc()
    """
    return _labelled(Counter, name, description, labels)


def gauge(name: str, description: str, labels: list[str] | None = None) -> Callable[..., Gauge]:
    return _labelled(Gauge, name, description, labels)


def histogram(
    name: str,
    description: str,
    labels: list[str] | None = None,
    buckets: tuple = _DURATION_BUCKETS,
) -> Callable[..., Histogram]:
    """Histogram with the standard labels; default buckets suit sub-second work."""
    return _labelled(Histogram, name, description, labels, buckets=buckets)


# ── Memoizer instruments ──────────────────────────────────────────────────────
# Registered once per process; prometheus rejects duplicate names.

lookups = counter(
    "memo_lookups_total", "Cache lookups by outcome", ["outcome"]
)  # outcome: hit | miss | timeout | error
computations = counter(
    "memo_computations_total", "Real executions of memoized functions"
)
coalesced = counter(
    "memo_coalesced_total", "Callers queued behind an in-flight computation"
)
store_writes = counter(
    "memo_store_writes_total", "Cache writes by outcome", ["outcome"]
)  # outcome: ok | error | skipped
compute_seconds = histogram(
    "memo_compute_duration_seconds", "Duration of real executions"
)
inflight_entries = gauge(
    "memo_inflight_entries", "Fingerprints currently being computed"
)


__all__ = [
    "counter",
    "gauge",
    "histogram",
    "lookups",
    "computations",
    "coalesced",
    "store_writes",
    "compute_seconds",
    "inflight_entries",
]
