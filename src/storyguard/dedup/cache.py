"""
Redis-backed Recency Cache.

Thin, namespaced wrapper over redis.asyncio providing the primitives the
deduplication components build on:
- TTL'd string keys (plain and set-if-absent)
- TTL'd sets for per-source URL and cross-module fingerprint membership
- Time-scored sorted set index trimmed by count and age
- Bounded lists for the recent topics window
- Prefix deletion via incremental SCAN (never KEYS)

Every round trip is bounded by ``operation_timeout``; connection errors,
protocol errors and timeouts surface uniformly as StoreUnavailable so callers
can degrade instead of blocking content generation.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Dict, List, Optional, Sequence, Set, Tuple

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from storyguard.config import RedisConfig
from storyguard.errors import StoreUnavailable
from storyguard.observability.metrics import METRICS
from storyguard.protocols import ResetScope

logger = structlog.get_logger(__name__)

_GLOB_SPECIAL = "\\*?[]"

# --- Key space ---

SEMANTIC_INDEX_KEY = "semantic:index"
GLOBAL_ARTICLES_KEY = "global:articles"
RECENT_TOPICS_KEY = "recent_topics"

RESET_PREFIXES: Dict[ResetScope, str] = {
    ResetScope.CONTENT: "content:",
    ResetScope.SEMANTIC: "semantic:",
    ResetScope.SOURCE: "source:",
    ResetScope.GLOBAL: "global:",
    ResetScope.TOPICS: RECENT_TOPICS_KEY,
    ResetScope.CROSSPOST: "crosspost:",
}


def content_key(fingerprint: str) -> str:
    return f"content:{fingerprint}"


def semantic_key(digest: str) -> str:
    return f"semantic:{digest}"


def source_key(source: str) -> str:
    return f"source:{source}"


def global_origin_key(fingerprint: str) -> str:
    return f"global:origin:{fingerprint}"


def crosspost_key(destination: str) -> str:
    return f"crosspost:{destination}"


def create_redis_client(config: RedisConfig) -> redis.Redis:
    """
    Build the asyncio Redis client used by the engine.

    The connection is established lazily on first command, so constructing
    the client never blocks or fails on an unreachable server.
    """
    return redis.from_url(
        config.url,
        decode_responses=True,
        socket_timeout=config.socket_timeout,
        socket_connect_timeout=config.socket_connect_timeout,
        retry_on_timeout=True,
        health_check_interval=30,
    )


def _ttl_ms(ttl: Optional[float]) -> Optional[int]:
    if ttl is None:
        return None
    return max(1, int(ttl * 1000))


def _escape_glob(value: str) -> str:
    return "".join("\\" + ch if ch in _GLOB_SPECIAL else ch for ch in value)


class RecencyCache:
    """
    Namespaced TTL store shared by every content generator.

    The client must be created with ``decode_responses=True``; values are
    returned as ``str``.
    """

    def __init__(self, client: Any, namespace: str = "", operation_timeout: float = 2.0):
        """
        Args:
            client: redis.asyncio client (or a compatible fake in tests)
            namespace: Optional prefix prepended as ``<namespace>:`` to all keys
            operation_timeout: Seconds allowed per round trip
        """
        self._client = client
        self.namespace = namespace.strip().rstrip(":")
        self.operation_timeout = operation_timeout

        # Statistics
        self._operations = 0
        self._errors = 0
        self._last_error_log = 0.0
        self._error_log_interval = 60  # Log store errors at warning level max once per minute

    def key(self, name: str) -> str:
        """Return the fully qualified key for ``name``."""
        return f"{self.namespace}:{name}" if self.namespace else name

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        self._operations += 1
        try:
            return await asyncio.wait_for(awaitable, timeout=self.operation_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            self._errors += 1
            METRICS["store_errors"].labels(operation=operation).inc()

            now = time.monotonic()
            if now - self._last_error_log > self._error_log_interval:
                logger.warning("Recency store operation failed", operation=operation, error=str(e) or type(e).__name__)
                self._last_error_log = now
            else:
                logger.debug("Recency store operation failed", operation=operation, error=str(e) or type(e).__name__)

            raise StoreUnavailable(operation, e) from e

    # ------------------------------------------------------------------
    # String keys
    # ------------------------------------------------------------------

    async def put(self, key: str, value: str, ttl: Optional[float]) -> None:
        """Store ``value`` under ``key``; ``ttl=None`` means no expiry."""
        await self._call("put", self._client.set(self.key(key), value, px=_ttl_ms(ttl)))

    async def put_if_absent(self, key: str, value: str, ttl: Optional[float]) -> bool:
        """
        Atomically store ``value`` only if ``key`` does not exist.

        Returns:
            True if this call created the key, False if it already existed.
        """
        result = await self._call("put_if_absent", self._client.set(self.key(key), value, px=_ttl_ms(ttl), nx=True))
        return bool(result)

    async def get(self, key: str) -> Optional[str]:
        return await self._call("get", self._client.get(self.key(key)))

    async def get_many(self, keys: Sequence[str]) -> List[Optional[str]]:
        """Fetch several keys in one round trip, preserving order."""
        if not keys:
            return []
        return list(await self._call("get_many", self._client.mget([self.key(k) for k in keys])))

    async def exists(self, key: str) -> bool:
        return bool(await self._call("exists", self._client.exists(self.key(key))))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._call("delete", self._client.delete(*[self.key(k) for k in keys])))

    # ------------------------------------------------------------------
    # Sets
    # ------------------------------------------------------------------

    async def add_to_set(self, key: str, member: str, ttl: Optional[float] = None) -> None:
        """Add ``member`` and refresh the set's TTL in a single transaction."""
        full_key = self.key(key)

        async def _add() -> None:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.sadd(full_key, member)
                if ttl is not None:
                    pipe.pexpire(full_key, _ttl_ms(ttl))
                await pipe.execute()

        await self._call("add_to_set", _add())

    async def is_member(self, key: str, member: str) -> bool:
        return bool(await self._call("is_member", self._client.sismember(self.key(key), member)))

    async def set_members(self, key: str) -> Set[str]:
        return set(await self._call("set_members", self._client.smembers(self.key(key))))

    async def set_size(self, key: str) -> int:
        return int(await self._call("set_size", self._client.scard(self.key(key))))

    # ------------------------------------------------------------------
    # Time-scored index
    # ------------------------------------------------------------------

    async def index_add(
        self,
        key: str,
        member: str,
        score: float,
        ttl: Optional[float] = None,
        max_entries: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> None:
        """
        Add ``member`` with ``score`` and trim the index.

        Args:
            key: Sorted set key
            member: Member to add (re-adding updates its score)
            score: Usually the insertion time in epoch seconds
            ttl: Optional TTL refreshed on the whole index
            max_entries: Keep only the highest-scored N members
            min_score: Drop members scored strictly below this value
        """
        full_key = self.key(key)

        async def _add() -> None:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.zadd(full_key, {member: score})
                if min_score is not None:
                    pipe.zremrangebyscore(full_key, "-inf", f"({min_score}")
                if max_entries is not None:
                    pipe.zremrangebyrank(full_key, 0, -(max_entries + 1))
                if ttl is not None:
                    pipe.pexpire(full_key, _ttl_ms(ttl))
                await pipe.execute()

        await self._call("index_add", _add())

    async def index_range(
        self, key: str, min_score: Optional[float] = None, limit: Optional[int] = None
    ) -> List[Tuple[str, float]]:
        """Members scored at or above ``min_score``, newest first."""
        low: Any = "-inf" if min_score is None else min_score
        if limit is None:
            coro = self._client.zrevrangebyscore(self.key(key), "+inf", low, withscores=True)
        else:
            coro = self._client.zrevrangebyscore(self.key(key), "+inf", low, start=0, num=limit, withscores=True)
        rows = await self._call("index_range", coro)
        return [(member, float(score)) for member, score in rows]

    async def index_remove(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return int(await self._call("index_remove", self._client.zrem(self.key(key), *members)))

    # ------------------------------------------------------------------
    # Bounded lists
    # ------------------------------------------------------------------

    async def push_to_list(self, key: str, value: str, max_len: int, ttl: Optional[float] = None) -> None:
        """Prepend ``value`` and keep only the newest ``max_len`` items."""
        full_key = self.key(key)

        async def _push() -> None:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.lpush(full_key, value)
                pipe.ltrim(full_key, 0, max_len - 1)
                if ttl is not None:
                    pipe.pexpire(full_key, _ttl_ms(ttl))
                await pipe.execute()

        await self._call("push_to_list", _push())

    async def list_range(self, key: str, count: Optional[int] = None) -> List[str]:
        """Newest-first items of a list, optionally limited to ``count``."""
        end = -1 if count is None else count - 1
        return list(await self._call("list_range", self._client.lrange(self.key(key), 0, end)))

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def delete_by_prefix(self, prefix: str, batch_size: int = 500) -> int:
        """
        Delete every key starting with ``prefix`` inside this namespace.

        Walks the keyspace with SCAN so a large cache never blocks the server.

        Returns:
            Number of keys removed.
        """
        pattern = _escape_glob(self.key(prefix)) + "*"
        removed = 0
        cursor: Any = 0
        while True:
            cursor, keys = await self._call(
                "scan", self._client.scan(cursor=cursor, match=pattern, count=batch_size)
            )
            if keys:
                removed += int(await self._call("delete", self._client.delete(*keys)))
            if int(cursor) == 0:
                break

        logger.info("Deleted keys by prefix", prefix=self.key(prefix), removed=removed)
        return removed

    async def ping(self) -> bool:
        return bool(await self._call("ping", self._client.ping()))

    async def close(self) -> None:
        """Close the underlying connection pool."""
        try:
            await self._client.aclose()
            logger.info("Redis connection closed")
        except (RedisError, OSError) as e:
            logger.warning("Error closing Redis connection", error=str(e))

    def get_stats(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "operation_timeout": self.operation_timeout,
            "operations": self._operations,
            "errors": self._errors,
            "error_rate": self._errors / max(1, self._operations),
        }
