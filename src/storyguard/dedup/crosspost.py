"""
Crosspost Throttle.

Enforces a minimum interval between relays of summaries to the same
destination platform. Each destination is either READY or COOLING; it only
moves back to READY as time passes. The last relayed text is kept with the
marker so a near-identical summary is not relayed twice within a day.
"""

from __future__ import annotations

import json
import time
from typing import Any, Callable, Dict, Optional

import structlog

from storyguard.errors import StoreUnavailable
from storyguard.observability.metrics import METRICS
from storyguard.protocols import CrosspostMarker, CrosspostState

from .cache import RecencyCache, crosspost_key
from .fingerprint import FingerprintGenerator

logger = structlog.get_logger(__name__)

# Markers outlive the throttle window so the last relay stays inspectable.
MARKER_RETENTION_SECONDS = 24 * 60 * 60


class CrosspostThrottle:
    """Per-destination relay throttle backed by ``crosspost:<destination>`` markers."""

    def __init__(
        self,
        cache: RecencyCache,
        min_interval_seconds: float = 6 * 60 * 60,
        clock: Callable[[], float] = time.time,
        generator: Optional[FingerprintGenerator] = None,
        similarity_threshold: float = 0.6,
    ):
        if min_interval_seconds <= 0:
            raise ValueError("min_interval_seconds must be positive")
        self.cache = cache
        self.min_interval_seconds = min_interval_seconds
        self.clock = clock
        self.generator = generator or FingerprintGenerator()
        self.similarity_threshold = similarity_threshold

    @property
    def retention_seconds(self) -> float:
        return max(self.min_interval_seconds, MARKER_RETENTION_SECONDS)

    async def last_crosspost(self, destination: str) -> Optional[CrosspostMarker]:
        """
        Read the last relay marker for a destination.

        Raises:
            StoreUnavailable: If the store cannot be read.
        """
        raw = await self.cache.get(crosspost_key(destination))
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return CrosspostMarker(
                destination=destination,
                timestamp=float(data["timestamp"]),
                content=data.get("content"),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable crosspost marker", destination=destination, error=str(e))
            return None

    async def state(self, destination: str) -> CrosspostState:
        """Read-only view of the throttle; never counts as a blocked relay."""
        try:
            marker = await self.last_crosspost(destination)
        except StoreUnavailable:
            return CrosspostState.READY
        if marker is None or marker.seconds_since(self.clock()) >= self.min_interval_seconds:
            return CrosspostState.READY
        return CrosspostState.COOLING

    async def has_been_crossposted(self, destination: str, content: str) -> bool:
        """
        Check whether ``content`` repeats the last relay to a destination.

        Compares the term overlap of ``content`` with the text stored in the
        last marker, while that marker is inside the retention window.
        Unreadable markers and store faults answer False.
        """
        try:
            marker = await self.last_crosspost(destination)
        except StoreUnavailable as e:
            logger.warning("Crosspost history unavailable", destination=destination, operation=e.operation)
            return False

        if marker is None or not marker.content or not content:
            return False
        if marker.seconds_since(self.clock()) > self.retention_seconds:
            return False

        current = self.generator.compute_semantic_fingerprint(content, "")
        previous = self.generator.compute_semantic_fingerprint(marker.content, "")
        overlap = current.overlap(previous)
        if overlap >= self.similarity_threshold:
            logger.debug("Crosspost repeats last relay", destination=destination, overlap=round(overlap, 3))
            return True
        return False

    async def can_crosspost(self, destination: str) -> bool:
        """
        Check whether a destination may receive another relay.

        A store fault answers True: missing a throttle window is preferable
        to silencing the crosspost generator.
        """
        try:
            marker = await self.last_crosspost(destination)
        except StoreUnavailable as e:
            logger.warning(
                "Crosspost throttle unavailable, allowing relay", destination=destination, operation=e.operation
            )
            return True

        if marker is None:
            return True

        elapsed = marker.seconds_since(self.clock())
        if elapsed >= self.min_interval_seconds:
            return True

        METRICS["crosspost_blocked"].labels(destination=destination).inc()
        logger.debug(
            "Crosspost throttled",
            destination=destination,
            elapsed_seconds=round(elapsed, 1),
            remaining_seconds=round(self.min_interval_seconds - elapsed, 1),
        )
        return False

    async def mark_crossposted(self, destination: str, content: Optional[str] = None) -> bool:
        """
        Record a successful relay at the current time.

        Args:
            destination: Platform identifier (e.g. ``bluesky``)
            content: Optional copy of what was relayed, kept for auditing

        Returns:
            True if the marker was stored, False if the store was unavailable.
        """
        payload: Dict[str, Any] = {"timestamp": self.clock()}
        if content is not None:
            payload["content"] = content
        try:
            await self.cache.put(
                crosspost_key(destination),
                json.dumps(payload),
                ttl=self.retention_seconds,
            )
        except StoreUnavailable as e:
            logger.warning("Could not record crosspost", destination=destination, operation=e.operation)
            return False

        logger.info("Recorded crosspost", destination=destination)
        return True
