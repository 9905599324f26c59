"""
Deduplication Facade.

Single entry point shared by every content generator (regular posts, urgent
alerts, cross-posted summaries):
- evaluate(): is this article new? (read-only)
- commit(): record that it was published
- topic and crosspost helpers for pacing
- reset(): administrative purge of cache families

Features:
- Store outages never block generation: evaluate degrades to NOVEL and
  commit reports a non-raising failure
- Optional exclusive commit so concurrent workers cannot both publish the
  same exact story
- Prometheus metrics and structured logging with per-call latency
"""

from __future__ import annotations

import json
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import structlog

from storyguard.config import Config, DedupSettings, load_config
from storyguard.errors import MalformedArticle, StoreUnavailable
from storyguard.observability.metrics import METRICS, start_metrics_server
from storyguard.protocols import (
    EMPTY_FINGERPRINT,
    Article,
    CacheEntry,
    CommitResult,
    CrosspostMarker,
    CrosspostState,
    DedupDecision,
    DuplicateType,
    ResetScope,
    TopicEntry,
    TopicLabel,
)

from .cache import (
    GLOBAL_ARTICLES_KEY,
    RESET_PREFIXES,
    SEMANTIC_INDEX_KEY,
    RecencyCache,
    content_key,
    create_redis_client,
    global_origin_key,
    semantic_key,
    source_key,
)
from .clustering import cluster_articles
from .crosspost import CrosspostThrottle
from .fingerprint import FingerprintGenerator
from .matcher import SimilarityMatcher
from .topics import TopicDiversityTracker

logger = structlog.get_logger(__name__)

ScopeArg = Union[str, ResetScope, Iterable[Union[str, ResetScope]]]


class DedupEngine:
    """
    Cache-backed freshness and deduplication engine.

    The engine owns every cache-resident record; generators only see
    decisions and commit results.
    """

    def __init__(
        self,
        cache: RecencyCache,
        settings: Optional[DedupSettings] = None,
        source_priority: Optional[Mapping[str, int]] = None,
        clock: Callable[[], float] = time.time,
        owns_cache: bool = False,
    ):
        """
        Initialize the engine.

        Args:
            cache: Recency cache over an injected Redis client
            settings: Thresholds and TTLs (defaults when omitted)
            source_priority: Source rank used to pick cluster representatives
            clock: Epoch-seconds clock, injectable for tests
            owns_cache: Close the cache (and its client) on ``close()``
        """
        self.cache = cache
        self.settings = settings or DedupSettings()
        self.source_priority: Dict[str, int] = dict(source_priority or {})
        self.clock = clock
        self._owns_cache = owns_cache

        self.generator = FingerprintGenerator(top_term_count=self.settings.top_term_count)
        self.matcher = SimilarityMatcher(cache, self.generator, self.settings, clock=clock)
        self.topics = TopicDiversityTracker(
            cache,
            capacity=self.settings.topic_window_capacity,
            max_age_seconds=self.settings.topic_window_max_age_seconds,
            clock=clock,
        )
        self.crosspost = CrosspostThrottle(
            cache,
            min_interval_seconds=self.settings.crosspost_min_interval_seconds,
            clock=clock,
            generator=self.generator,
            similarity_threshold=self.settings.similarity_threshold,
        )

        # Performance tracking
        self._decision_counts: Dict[str, int] = {t.value: 0 for t in DuplicateType}
        self._degraded_evaluations = 0
        self._commits = 0
        self._failed_commits = 0
        self._lost_races = 0
        self._start_time = time.time()

        logger.info(
            "Initialized DedupEngine",
            namespace=cache.namespace,
            similarity_threshold=self.settings.similarity_threshold,
            exclusive_commit=self.settings.exclusive_commit,
        )

    async def __aenter__(self) -> DedupEngine:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Evaluate / commit
    # ------------------------------------------------------------------

    async def evaluate(self, article: Article) -> DedupDecision:
        """
        Decide whether an article is fresh. Never writes and never raises on
        store faults.

        Args:
            article: Article from the fetch layer

        Returns:
            DedupDecision with the classification and diagnostics
        """
        start_time = time.perf_counter()
        try:
            decision = await self.matcher.match(article)
        finally:
            METRICS["evaluate_latency"].observe(time.perf_counter() - start_time)

        self._decision_counts[decision.decision.value] += 1
        if decision.degraded:
            self._degraded_evaluations += 1
        METRICS["evaluations"].labels(decision=decision.decision.value).inc()

        logger.debug(
            "Article evaluated",
            url=article.url,
            source=article.source,
            decision=decision.decision.value,
            matched_source=decision.matched_source,
            overlap=decision.overlap_score,
            degraded=decision.degraded,
            duration_ms=round((time.perf_counter() - start_time) * 1000, 3),
        )
        return decision

    async def commit(self, article: Article) -> CommitResult:
        """
        Record a published article in every cache family.

        Re-committing the same article is harmless: the content entry is
        created once and set memberships are idempotent. Under exclusive
        commit only the call that creates the content entry succeeds, even
        when several workers commit the very same article.

        Returns:
            CommitResult; ``committed=False`` with ``degraded=True`` when the
            store failed, or with ``decision=DUPLICATE_EXACT`` when the fingerprint
            was already claimed under exclusive commit.
        """
        try:
            article.validate()
        except MalformedArticle as e:
            logger.debug("Committing malformed article", url=article.url, missing=e.missing)

        fingerprint = self.generator.compute_content_fingerprint(article.title, article.description)
        url_only = fingerprint == EMPTY_FINGERPRINT
        if url_only:
            if not article.url.strip():
                logger.warning("Skipping commit of unidentifiable article", source=article.source)
                METRICS["commits"].labels(outcome="skipped").inc()
                return CommitResult(committed=False, content_fingerprint=EMPTY_FINGERPRINT)
            fingerprint = self.generator.compute_url_fingerprint(article.url)

        now = self.clock()
        settings = self.settings
        written: List[str] = []

        try:
            entry = CacheEntry(
                fingerprint=fingerprint,
                url=article.url,
                source=article.source,
                inserted_at=now,
                expires_at=now + settings.content_ttl_seconds,
            )
            created = await self.cache.put_if_absent(
                content_key(fingerprint), entry.to_json(), ttl=settings.content_ttl_seconds
            )
            if created:
                written.append(content_key(fingerprint))
            elif settings.exclusive_commit:
                self._lost_races += 1
                METRICS["commits"].labels(outcome="lost_race").inc()
                logger.info("Fingerprint already claimed by another worker", url=article.url, fingerprint=fingerprint)
                return CommitResult(
                    committed=False,
                    content_fingerprint=fingerprint,
                    decision=DuplicateType.DUPLICATE_EXACT,
                    written_keys=written,
                )

            if not url_only:
                written.extend(await self._write_semantic(article, fingerprint, now))

            if article.source and article.url:
                await self.cache.add_to_set(source_key(article.source), article.url, ttl=settings.source_ttl_seconds)
                written.append(source_key(article.source))

            if not url_only:
                global_ttl = settings.global_ttl_seconds
                origin = CacheEntry(
                    fingerprint=fingerprint,
                    url=article.url,
                    source=article.source,
                    inserted_at=now,
                    expires_at=now + global_ttl if global_ttl is not None else None,
                )
                if await self.cache.put_if_absent(global_origin_key(fingerprint), origin.to_json(), ttl=global_ttl):
                    written.append(global_origin_key(fingerprint))
                await self.cache.add_to_set(GLOBAL_ARTICLES_KEY, fingerprint, ttl=global_ttl)
                written.append(GLOBAL_ARTICLES_KEY)

        except StoreUnavailable as e:
            self._failed_commits += 1
            METRICS["commits"].labels(outcome="degraded").inc()
            logger.warning(
                "Commit failed, recency store unavailable",
                url=article.url,
                operation=e.operation,
                written_keys=written,
            )
            return CommitResult(
                committed=False, content_fingerprint=fingerprint, degraded=True, written_keys=written
            )

        self._commits += 1
        METRICS["commits"].labels(outcome="committed").inc()
        logger.info("Article committed", url=article.url, source=article.source, fingerprint=fingerprint)
        return CommitResult(committed=True, content_fingerprint=fingerprint, written_keys=written)

    async def _write_semantic(self, article: Article, fingerprint: str, now: float) -> List[str]:
        semantic = self.generator.compute_semantic_fingerprint(article.title, article.description)
        if not semantic.terms:
            return []

        lookback = self.settings.semantic_lookback_seconds
        payload = dict(semantic.to_dict())
        payload.update(
            {
                "content_fingerprint": fingerprint,
                "url": article.url,
                "source": article.source,
                "inserted_at": now,
            }
        )
        digest = semantic.digest
        # The first payload for a digest keeps its provenance; only the index slot is refreshed.
        created = await self.cache.put_if_absent(semantic_key(digest), json.dumps(payload), ttl=lookback)
        await self.cache.index_add(
            SEMANTIC_INDEX_KEY,
            digest,
            score=now,
            ttl=lookback,
            max_entries=self.settings.semantic_lookback_entries,
            min_score=now - lookback,
        )
        return [semantic_key(digest), SEMANTIC_INDEX_KEY] if created else [SEMANTIC_INDEX_KEY]

    # ------------------------------------------------------------------
    # Batch selection
    # ------------------------------------------------------------------

    async def select_fresh(self, articles: Iterable[Article]) -> List[Tuple[Article, DedupDecision]]:
        """
        Pick the fresh stories from one scan batch.

        Articles are clustered first so each story is evaluated once, through
        its highest-priority source.

        Returns:
            (representative, decision) pairs for novel stories, in the input
            order of the representatives.
        """
        batch = list(articles)
        clusters = cluster_articles(
            batch, self.generator, self.settings.similarity_threshold, self.source_priority
        )

        fresh: List[Tuple[int, Article, DedupDecision]] = []
        for cluster in clusters:
            representative = cluster.representative_article
            decision = await self.evaluate(representative)
            if decision.accepted:
                fresh.append((cluster.positions[cluster.representative], representative, decision))

        logger.info("Batch screened", articles=len(batch), stories=len(clusters), fresh=len(fresh))
        fresh.sort(key=lambda item: item[0])
        return [(article, decision) for _, article, decision in fresh]

    # ------------------------------------------------------------------
    # Topics and crossposting
    # ------------------------------------------------------------------

    async def record_topic(self, label: TopicLabel) -> bool:
        return await self.topics.record_topic(label)

    async def topic_pressure(self, label: TopicLabel) -> float:
        return await self.topics.topic_pressure(label)

    async def recent_topics(self) -> List[TopicEntry]:
        return await self.topics.recent_topics()

    async def suggest_topic(self, candidates: Iterable[TopicLabel]) -> TopicLabel:
        return await self.topics.suggest_topic(list(candidates))

    async def can_crosspost(self, destination: str) -> bool:
        return await self.crosspost.can_crosspost(destination)

    async def mark_crossposted(self, destination: str, content: Optional[str] = None) -> bool:
        return await self.crosspost.mark_crossposted(destination, content)

    async def has_been_crossposted(self, destination: str, content: str) -> bool:
        return await self.crosspost.has_been_crossposted(destination, content)

    async def crosspost_state(self, destination: str) -> CrosspostState:
        return await self.crosspost.state(destination)

    async def last_crosspost(self, destination: str) -> Optional[CrosspostMarker]:
        return await self.crosspost.last_crosspost(destination)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def reset(self, scope: ScopeArg) -> Dict[str, int]:
        """
        Purge one or more cache families.

        Args:
            scope: A scope name, ResetScope, ``"all"``, or an iterable of those

        Returns:
            Deleted key count per family.

        Raises:
            StoreUnavailable: The purge could not complete.
        """
        if isinstance(scope, (str, ResetScope)):
            scope = [scope]
        scopes = ResetScope.parse(scope)

        removed: Dict[str, int] = {}
        for family in scopes:
            removed[family.value] = await self.cache.delete_by_prefix(RESET_PREFIXES[family])

        logger.warning("Cache reset", scopes=[s.value for s in scopes], removed=removed)
        return removed

    async def get_stats(self) -> Dict[str, Any]:
        """Engine counters plus store-side sizes when the store is reachable."""
        uptime = time.time() - self._start_time
        total = sum(self._decision_counts.values())
        duplicates = total - self._decision_counts[DuplicateType.NOVEL.value]

        stats: Dict[str, Any] = {
            "total_evaluations": total,
            "decisions": dict(self._decision_counts),
            "duplicate_rate": duplicates / max(1, total),
            "degraded_evaluations": self._degraded_evaluations,
            "commits": self._commits,
            "failed_commits": self._failed_commits,
            "lost_races": self._lost_races,
            "uptime_seconds": uptime,
            "cache": self.cache.get_stats(),
        }

        try:
            stats["global_articles"] = await self.cache.set_size(GLOBAL_ARTICLES_KEY)
            stats["semantic_index_entries"] = len(await self.cache.index_range(SEMANTIC_INDEX_KEY))
            stats["store_available"] = True
        except StoreUnavailable as e:
            logger.warning("Error collecting store stats", operation=e.operation)
            stats["store_available"] = False

        return stats

    async def close(self) -> None:
        """Release the cache connection if this engine owns it."""
        if self._owns_cache:
            await self.cache.close()
        logger.info("DedupEngine closed")


async def create_engine(config: Optional[Config] = None, client: Any = None) -> DedupEngine:
    """
    Build an engine from configuration.

    Creates the Redis client (unless one is given), checks connectivity and
    hands ownership of the connection to the engine. An unreachable store is
    logged but not fatal; the engine runs degraded until it recovers.

    Args:
        config: Loaded configuration; ``load_config()`` is used when omitted
        client: Pre-built redis.asyncio client, e.g. a fake in tests

    Raises:
        ConfigurationError: If no config was given and loading it fails.
    """
    config = config or load_config()
    if client is None:
        client = create_redis_client(config.redis)

    if config.monitoring.prometheus_port:
        start_metrics_server(config.monitoring.prometheus_port)

    cache = RecencyCache(client, namespace=config.redis.namespace, operation_timeout=config.redis.operation_timeout)
    try:
        await cache.ping()
    except StoreUnavailable as e:
        logger.warning("Recency store not reachable at startup, running degraded", url=config.redis.url, error=str(e))

    return DedupEngine(
        cache,
        settings=config.dedup,
        source_priority=config.source_priority,
        owns_cache=True,
    )
