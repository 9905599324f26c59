"""
Similarity Matcher.

Classifies an article against the recency cache in a fixed order and returns
on the first hit:
1. Exact content fingerprint already cached
2. URL already seen from the same source
3. Semantic overlap with a recent story on the same topic
4. Content fingerprint committed by another module

The matcher never writes. Store failures degrade to a NOVEL decision so a
cache outage cannot block content generation.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from storyguard.config import DedupSettings
from storyguard.errors import MalformedArticle, StoreUnavailable
from storyguard.observability.metrics import METRICS
from storyguard.protocols import (
    EMPTY_FINGERPRINT,
    Article,
    CacheEntry,
    Confidence,
    DedupDecision,
    DuplicateType,
    SemanticFingerprint,
)

from .cache import (
    GLOBAL_ARTICLES_KEY,
    SEMANTIC_INDEX_KEY,
    RecencyCache,
    content_key,
    global_origin_key,
    semantic_key,
    source_key,
)
from .fingerprint import FingerprintGenerator

logger = structlog.get_logger(__name__)

Scorer = Callable[[SemanticFingerprint, SemanticFingerprint], float]


def jaccard_overlap(a: SemanticFingerprint, b: SemanticFingerprint) -> float:
    return a.overlap(b)


@dataclass
class SemanticMatch:
    """Best qualifying semantic candidate found in the lookback window."""

    overlap: float
    source: Optional[str]
    url: Optional[str]
    content_fingerprint: Optional[str]


class SimilarityMatcher:
    """
    Read-only duplicate classifier over the shared recency cache.

    Semantic matching compares term sets lexically; pass a different
    ``scorer`` to plug in another similarity measure.
    """

    def __init__(
        self,
        cache: RecencyCache,
        generator: FingerprintGenerator,
        settings: DedupSettings,
        scorer: Scorer = jaccard_overlap,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.generator = generator
        self.settings = settings
        self.scorer = scorer
        self.clock = clock

    async def match(self, article: Article) -> DedupDecision:
        """
        Classify an article.

        Args:
            article: Article to check

        Returns:
            DedupDecision; ``degraded`` is set when the store was unavailable
            and the article was treated as novel.
        """
        confidence = Confidence.HIGH
        try:
            article.validate()
        except MalformedArticle as e:
            confidence = Confidence.LOW
            logger.debug("Malformed article, matching with low confidence", url=article.url, missing=e.missing)

        content_fp = self.generator.compute_content_fingerprint(article.title, article.description)
        if content_fp == EMPTY_FINGERPRINT:
            return await self._match_url_only(article)

        semantic = self.generator.compute_semantic_fingerprint(article.title, article.description)
        decision = DedupDecision(
            decision=DuplicateType.NOVEL,
            content_fingerprint=content_fp,
            semantic_fingerprint=semantic,
            confidence=confidence,
        )

        try:
            # Stage 1: exact content
            raw = await self.cache.get(content_key(content_fp))
            if raw is not None:
                decision.decision = DuplicateType.DUPLICATE_EXACT
                self._attach_entry(decision, raw)
                return decision

            # Stage 2: same URL from the same source
            if await self._seen_from_source(article):
                decision.decision = DuplicateType.DUPLICATE_SOURCE
                decision.matched_source = article.source
                decision.matched_url = article.url
                return decision

            # Stage 3: semantic overlap on the same topic
            if semantic.terms:
                best = await self._find_semantic_match(semantic)
                if best is not None:
                    decision.decision = DuplicateType.DUPLICATE_SEMANTIC
                    decision.overlap_score = best.overlap
                    decision.matched_source = best.source
                    decision.matched_url = best.url
                    return decision

            # Stage 4: committed by another module
            if await self.cache.is_member(GLOBAL_ARTICLES_KEY, content_fp):
                decision.decision = DuplicateType.DUPLICATE_CROSS_MODULE
                origin = await self.cache.get(global_origin_key(content_fp))
                if origin is not None:
                    self._attach_entry(decision, origin)
                return decision

        except StoreUnavailable as e:
            return self._degraded(decision, e)

        return decision

    async def _match_url_only(self, article: Article) -> DedupDecision:
        """Fallback for articles without usable text: URL is the only identity."""
        if not article.url.strip():
            logger.warning("Unidentifiable article, no text and no URL", source=article.source)
            return DedupDecision(
                decision=DuplicateType.NOVEL,
                content_fingerprint=EMPTY_FINGERPRINT,
                confidence=Confidence.LOW,
                unidentifiable=True,
            )

        url_fp = self.generator.compute_url_fingerprint(article.url)
        decision = DedupDecision(
            decision=DuplicateType.NOVEL,
            content_fingerprint=url_fp,
            confidence=Confidence.LOW,
        )
        try:
            raw = await self.cache.get(content_key(url_fp))
            if raw is not None:
                decision.decision = DuplicateType.DUPLICATE_EXACT
                self._attach_entry(decision, raw)
            elif await self._seen_from_source(article):
                decision.decision = DuplicateType.DUPLICATE_SOURCE
                decision.matched_source = article.source
                decision.matched_url = article.url
        except StoreUnavailable as e:
            return self._degraded(decision, e)
        return decision

    async def _seen_from_source(self, article: Article) -> bool:
        if not article.source or not article.url:
            return False
        return await self.cache.is_member(source_key(article.source), article.url)

    async def _find_semantic_match(self, semantic: SemanticFingerprint) -> Optional[SemanticMatch]:
        """Return the highest-overlap qualifying entry in the lookback window."""
        now = self.clock()
        rows = await self.cache.index_range(
            SEMANTIC_INDEX_KEY,
            min_score=now - self.settings.semantic_lookback_seconds,
            limit=self.settings.semantic_lookback_entries,
        )
        if not rows:
            return None

        payloads = await self.cache.get_many([semantic_key(digest) for digest, _ in rows])

        best: Optional[SemanticMatch] = None
        for (digest, score), raw in zip(rows, payloads):
            if raw is None:
                # Payload expired before its index slot was trimmed
                continue
            try:
                data = json.loads(raw)
                candidate = SemanticFingerprint.from_dict(data)
            except (ValueError, TypeError, AttributeError) as e:
                logger.debug("Skipping unreadable semantic entry", digest=digest, error=str(e))
                continue

            if candidate.topic is not semantic.topic:
                continue

            overlap = self.scorer(semantic, candidate)
            inserted_at = float(data.get("inserted_at", score))
            threshold = self.settings.threshold_for_age(now - inserted_at)
            if overlap >= threshold and (best is None or overlap > best.overlap):
                best = SemanticMatch(
                    overlap=overlap,
                    source=data.get("source"),
                    url=data.get("url"),
                    content_fingerprint=data.get("content_fingerprint"),
                )

        return best

    @staticmethod
    def _attach_entry(decision: DedupDecision, raw: str) -> None:
        try:
            entry = CacheEntry.from_json(raw)
        except (ValueError, KeyError, TypeError):
            return
        decision.matched_source = entry.source or None
        decision.matched_url = entry.url or None

    @staticmethod
    def _degraded(decision: DedupDecision, error: StoreUnavailable) -> DedupDecision:
        logger.warning(
            "Recency store unavailable, treating article as novel",
            operation=error.operation,
            fingerprint=decision.content_fingerprint,
        )
        METRICS["degraded_evaluations"].inc()
        decision.decision = DuplicateType.NOVEL
        decision.matched_source = None
        decision.matched_url = None
        decision.overlap_score = None
        decision.degraded = True
        return decision
