"""
In-batch story clustering.

Several feeds usually carry the same story within one scan. Grouping a batch
before consulting the cache lets a generator evaluate one representative per
story, preferring the most authoritative source.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Sequence

from storyguard.protocols import Article, ContentFingerprint, SemanticFingerprint

from .fingerprint import FingerprintGenerator

_UNKNOWN_PRIORITY = 99
_NO_DATE = datetime.max.replace(tzinfo=timezone.utc)


@dataclass
class StoryCluster:
    """Articles judged to describe the same story, in input order."""

    content_fingerprint: ContentFingerprint
    semantic_fingerprint: SemanticFingerprint
    articles: List[Article] = field(default_factory=list)
    positions: List[int] = field(default_factory=list)
    representative: int = 0

    @property
    def representative_article(self) -> Article:
        return self.articles[self.representative]

    def matches(self, content_fp: ContentFingerprint, semantic: SemanticFingerprint, threshold: float) -> bool:
        if content_fp == self.content_fingerprint:
            return True
        if not semantic.terms or semantic.topic is not self.semantic_fingerprint.topic:
            return False
        return semantic.overlap(self.semantic_fingerprint) >= threshold


def cluster_articles(
    articles: Sequence[Article],
    generator: FingerprintGenerator,
    threshold: float,
    source_priority: Optional[Mapping[str, int]] = None,
) -> List[StoryCluster]:
    """
    Group a batch into story clusters.

    An article joins the first cluster whose reference article has the same
    content fingerprint, or the same topic with term overlap at or above
    ``threshold``. The reference of a cluster is its first article.

    Args:
        articles: One scan batch
        generator: Fingerprint generator shared with the engine
        threshold: Minimum term overlap for a semantic match
        source_priority: Source name to rank (lower wins), used to pick each
            cluster's representative

    Returns:
        Clusters in order of first appearance.
    """
    priorities = source_priority or {}
    clusters: List[StoryCluster] = []
    for position, article in enumerate(articles):
        content_fp = generator.compute_content_fingerprint(article.title, article.description)
        semantic = generator.compute_semantic_fingerprint(article.title, article.description)

        for cluster in clusters:
            if cluster.matches(content_fp, semantic, threshold):
                cluster.articles.append(article)
                cluster.positions.append(position)
                break
        else:
            clusters.append(
                StoryCluster(
                    content_fingerprint=content_fp,
                    semantic_fingerprint=semantic,
                    articles=[article],
                    positions=[position],
                )
            )

    for cluster in clusters:
        cluster.representative = pick_representative(cluster, priorities)
    return clusters


def pick_representative(cluster: StoryCluster, source_priority: Mapping[str, int]) -> int:
    """
    Choose the article that stands for the cluster.

    Lowest priority number wins (unknown sources rank last), then the earliest
    publication time, then input order.

    Returns:
        Index into ``cluster.articles``.
    """
    priorities: Dict[str, int] = {name.lower(): rank for name, rank in source_priority.items()}

    def _rank(index: int):
        article = cluster.articles[index]
        published = article.published_at or _NO_DATE
        if published.tzinfo is None:
            published = published.replace(tzinfo=timezone.utc)
        return (priorities.get(article.source.lower(), _UNKNOWN_PRIORITY), published, index)

    return min(range(len(cluster.articles)), key=_rank)
