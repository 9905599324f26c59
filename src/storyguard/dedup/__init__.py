"""
Content freshness and deduplication for StoryGuard.

Layers, checked in order for every article:
1. Exact: normalized title + description → SHA-256 → ``content:<fp>``
2. Source: URL membership in ``source:<name>``
3. Semantic: top-N stemmed terms + topic label, Jaccard overlap against a
   time-scored lookback index
4. Cross-module: fingerprint membership in ``global:articles``

Key features:
- Shared Redis recency cache with TTLs, namespacing and SCAN-based resets
- Degraded mode (store down = treat as novel, never block generation)
- Topic diversity window and per-destination crosspost throttle
- In-batch clustering with source priorities
"""

from .cache import RecencyCache, create_redis_client
from .clustering import StoryCluster, cluster_articles, pick_representative
from .crosspost import CrosspostThrottle
from .engine import DedupEngine, create_engine
from .fingerprint import FingerprintGenerator, normalize_text
from .matcher import SimilarityMatcher
from .topics import TopicDiversityTracker

__all__ = [
    "RecencyCache",
    "create_redis_client",
    "StoryCluster",
    "cluster_articles",
    "pick_representative",
    "CrosspostThrottle",
    "DedupEngine",
    "create_engine",
    "FingerprintGenerator",
    "normalize_text",
    "SimilarityMatcher",
    "TopicDiversityTracker",
]
