"""Logging and metrics for the deduplication engine."""

from __future__ import annotations

from .logging import configure_logging
from .metrics import METRICS, start_metrics_server

__all__ = ["configure_logging", "METRICS", "start_metrics_server"]
