"""
Defines Prometheus metrics for the deduplication engine.
"""

from __future__ import annotations

from typing import Any, Dict, Set

from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Histogram as _OrigHistogram
from prometheus_client import start_http_server

# ---------------------------------------------------------------------------
# Duplicate-safe Prometheus metric wrappers
# ---------------------------------------------------------------------------
# Modules may be re-imported during the test suite; reuse collectors that are
# already registered instead of failing with a duplicate timeseries error.


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing

        try:
            return metric_cls(name, documentation, *args, **kwargs)
        except ValueError:
            # Registration lost the race, fall back to the now-existing collector.
            return _PROM_REGISTRY._names_to_collectors[name]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)
Histogram = _duplicate_safe_factory(_OrigHistogram)


def _create_metrics() -> Dict[str, Any]:
    return {
        "evaluations": Counter(
            "storyguard_evaluations_total",
            "Articles evaluated, by decision",
            ["decision"],
        ),
        "degraded_evaluations": Counter(
            "storyguard_degraded_evaluations_total",
            "Evaluations that fell back to NOVEL because the store was unavailable",
        ),
        "store_errors": Counter(
            "storyguard_store_errors_total",
            "Recency store failures, by operation",
            ["operation"],
        ),
        "commits": Counter(
            "storyguard_commits_total",
            "Commit attempts, by outcome",
            ["outcome"],
        ),
        "evaluate_latency": Histogram(
            "storyguard_evaluate_latency_seconds",
            "Latency of a full evaluate call",
            buckets=[0.001, 0.002, 0.005, 0.01, 0.02, 0.05, 0.1, 0.2, 0.5, 1.0, 2.0],
        ),
        "crosspost_blocked": Counter(
            "storyguard_crosspost_blocked_total",
            "Crosspost attempts refused by the throttle, by destination",
            ["destination"],
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()


_exporter_ports: Set[int] = set()


def start_metrics_server(port: int) -> bool:
    """
    Expose the default registry over HTTP for scraping.

    Returns:
        True if an exporter was started, False if one already runs on ``port``.
    """
    if port in _exporter_ports:
        return False
    start_http_server(port)
    _exporter_ports.add(port)
    return True
