"""
Topic Diversity Tracker.

Keeps a short, newest-first window of recently published topic labels so
generators can avoid covering the same category back to back. The window is
advisory: a store outage reads as "no pressure" rather than an error.
"""

from __future__ import annotations

import time
from typing import Callable, List, Sequence

import structlog

from storyguard.errors import StoreUnavailable
from storyguard.protocols import TopicEntry, TopicLabel

from .cache import RECENT_TOPICS_KEY, RecencyCache

logger = structlog.get_logger(__name__)


class TopicDiversityTracker:
    """Capacity- and age-bounded window of recent topics."""

    def __init__(
        self,
        cache: RecencyCache,
        capacity: int = 10,
        max_age_seconds: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if max_age_seconds <= 0:
            raise ValueError("max_age_seconds must be positive")
        self.cache = cache
        self.capacity = capacity
        self.max_age_seconds = max_age_seconds
        self.clock = clock

    async def record_topic(self, label: TopicLabel) -> bool:
        """
        Append a published topic to the window.

        Returns:
            True if recorded, False if the store was unavailable.
        """
        entry = TopicEntry(label=label, timestamp=self.clock())
        try:
            await self.cache.push_to_list(
                RECENT_TOPICS_KEY, entry.to_json(), max_len=self.capacity, ttl=self.max_age_seconds
            )
        except StoreUnavailable as e:
            logger.warning("Could not record topic", topic=label.value, operation=e.operation)
            return False

        logger.debug("Recorded topic", topic=label.value)
        return True

    async def recent_topics(self) -> List[TopicEntry]:
        """Window entries younger than ``max_age_seconds``, newest first."""
        try:
            raw_entries = await self.cache.list_range(RECENT_TOPICS_KEY, count=self.capacity)
        except StoreUnavailable as e:
            logger.warning("Could not read recent topics", operation=e.operation)
            return []

        cutoff = self.clock() - self.max_age_seconds
        entries: List[TopicEntry] = []
        for raw in raw_entries:
            try:
                entry = TopicEntry.from_json(raw)
            except (ValueError, KeyError, TypeError):
                logger.debug("Skipping unreadable topic entry", raw=raw)
                continue
            if entry.timestamp >= cutoff:
                entries.append(entry)
        return entries

    async def topic_pressure(self, label: TopicLabel) -> float:
        """
        Fraction of the live window occupied by ``label``.

        Returns:
            Value in [0, 1]; 0.0 for an empty window or an unavailable store.
        """
        entries = await self.recent_topics()
        if not entries:
            return 0.0
        return sum(1 for entry in entries if entry.label is label) / len(entries)

    async def suggest_topic(self, candidates: Sequence[TopicLabel]) -> TopicLabel:
        """
        Pick the least-covered candidate topic.

        Ties are broken by candidate order, so callers list their preferred
        topics first.
        """
        if not candidates:
            raise ValueError("at least one candidate topic is required")

        entries = await self.recent_topics()
        counts = {label: 0 for label in candidates}
        for entry in entries:
            if entry.label in counts:
                counts[entry.label] += 1
        return min(candidates, key=lambda label: counts[label])
