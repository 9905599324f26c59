"""
StoryGuard - Content freshness and deduplication for news-driven generators.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .config import Config
from .dedup import DedupEngine, create_engine
from .protocols import Article, DedupDecision, DuplicateType, TopicLabel

__all__ = [
    "__version__",
    "Config",
    "DedupEngine",
    "create_engine",
    "Article",
    "DedupDecision",
    "DuplicateType",
    "TopicLabel",
]
