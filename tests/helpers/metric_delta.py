"""
Helpers for validating metric value changes during tests.

Samples are read from the default Prometheus registry by name and label set,
so labelled counters can be checked without holding a reference to the child.
"""

from contextlib import contextmanager
from typing import Dict, Optional

from prometheus_client import REGISTRY


def sample_value(name: str, labels: Optional[Dict[str, str]] = None) -> float:
    """Current value of a sample, 0.0 if it was never observed."""
    value = REGISTRY.get_sample_value(name, labels or {})
    return value if value is not None else 0.0


@contextmanager
def metric_delta(name: str, expected_delta: float = 1, labels: Optional[Dict[str, str]] = None):
    """
    Context manager asserting that a sample changes by exactly ``expected_delta``.

    Usage:
        with metric_delta("storyguard_commits_total", labels={"outcome": "committed"}):
            await engine.commit(article)
    """
    initial_value = sample_value(name, labels)

    yield

    final_value = sample_value(name, labels)
    actual_delta = final_value - initial_value

    if actual_delta != expected_delta:
        raise AssertionError(
            f"Expected {name}{labels or ''} to change by {expected_delta}, "
            f"but it changed by {actual_delta} "
            f"(from {initial_value} to {final_value})"
        )


@contextmanager
def metric_increases(name: str, labels: Optional[Dict[str, str]] = None):
    """Context manager asserting that a sample increases by any positive amount."""
    initial_value = sample_value(name, labels)

    yield

    final_value = sample_value(name, labels)
    if final_value <= initial_value:
        raise AssertionError(
            f"Expected {name}{labels or ''} to increase, but it went from {initial_value} to {final_value}"
        )


@contextmanager
def histogram_observes(name: str, min_observations: int = 1):
    """Context manager asserting that a histogram records at least ``min_observations``."""
    initial_count = sample_value(f"{name}_count")

    yield

    actual_observations = sample_value(f"{name}_count") - initial_count
    if actual_observations < min_observations:
        raise AssertionError(
            f"Expected at least {min_observations} observations of {name}, but got {actual_observations}"
        )
