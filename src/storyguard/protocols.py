"""
Core data structures for the StoryGuard deduplication engine.

This module defines the contracts shared by every component:
- Article: the immutable record handed over by the fetch layer
- Content and semantic fingerprints used for equality/similarity checks
- CacheEntry: the JSON payload persisted under ``content:<fingerprint>``
- DedupDecision / CommitResult: what generators receive back
- Crosspost and topic window records
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, NewType, Optional, Tuple

from .errors import MalformedArticle

# ============================================================================
# Enums and Constants
# ============================================================================


class TopicLabel(Enum):
    """Coarse topic taxonomy, in trigger declaration order."""

    REGULATORY = "regulatory"
    MARKET_PRICE = "market_price"
    SECURITY_INCIDENT = "security_incident"
    PROTOCOL_UPGRADE = "protocol_upgrade"
    ADOPTION = "adoption"
    MACRO = "macro"
    GENERAL = "general"


class DuplicateType(Enum):
    """Outcome of a deduplication check."""

    NOVEL = "novel"
    DUPLICATE_EXACT = "duplicate_exact"
    DUPLICATE_SOURCE = "duplicate_source"
    DUPLICATE_SEMANTIC = "duplicate_semantic"
    DUPLICATE_CROSS_MODULE = "duplicate_cross_module"

    @property
    def is_duplicate(self) -> bool:
        return self is not DuplicateType.NOVEL


class Confidence(Enum):
    """How much of the article could be fingerprinted."""

    HIGH = "high"
    LOW = "low"


class CrosspostState(Enum):
    """Per-destination throttle state."""

    READY = "ready"
    COOLING = "cooling"


class ResetScope(Enum):
    """Key families that can be purged administratively."""

    CONTENT = "content"
    SEMANTIC = "semantic"
    SOURCE = "source"
    GLOBAL = "global"
    TOPICS = "topics"
    CROSSPOST = "crosspost"

    @classmethod
    def parse(cls, values: Iterable[str | "ResetScope"]) -> List["ResetScope"]:
        """Resolve scope names (or ``all``) into an ordered, de-duplicated list."""
        resolved: List[ResetScope] = []
        for value in values:
            if isinstance(value, ResetScope):
                scopes = [value]
            elif value.strip().lower() == "all":
                scopes = list(cls)
            else:
                scopes = [cls(value.strip().lower())]
            for scope in scopes:
                if scope not in resolved:
                    resolved.append(scope)
        return resolved


ContentFingerprint = NewType("ContentFingerprint", str)

# SHA-256 of the empty string; marks an article that cannot be identified.
EMPTY_FINGERPRINT = ContentFingerprint(hashlib.sha256(b"").hexdigest())


# ============================================================================
# Core Dataclasses
# ============================================================================


@dataclass(frozen=True)
class Article:
    """A fetched news article, immutable once handed to the engine."""

    title: str
    description: str
    url: str
    source: str
    published_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Article:
        """Build an article from a collaborator record.

        Accepts both ``publishedAt`` and ``published_at`` as ISO 8601 strings,
        epoch seconds or datetimes.
        """
        published = data.get("publishedAt", data.get("published_at"))
        return cls(
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            url=str(data.get("url") or ""),
            source=str(data.get("source") or ""),
            published_at=_parse_timestamp(published),
        )

    def validate(self) -> None:
        """Raise MalformedArticle if the title or description is blank."""
        missing = [name for name in ("title", "description") if not getattr(self, name).strip()]
        if missing:
            raise MalformedArticle(self.url, missing)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "url": self.url,
            "source": self.source,
            "publishedAt": self.published_at.isoformat() if self.published_at else None,
        }


@dataclass(frozen=True)
class SemanticFingerprint:
    """Top-N significant terms plus a coarse topic label."""

    terms: Tuple[str, ...]
    topic: TopicLabel

    @property
    def digest(self) -> str:
        """Stable identifier used in the ``semantic:<digest>`` key."""
        payload = self.topic.value + "|" + " ".join(sorted(self.terms))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def overlap(self, other: SemanticFingerprint) -> float:
        """Jaccard overlap of the two term sets (shared terms / union of terms)."""
        mine, theirs = set(self.terms), set(other.terms)
        union = mine | theirs
        if not union:
            return 0.0
        return len(mine & theirs) / len(union)

    def to_dict(self) -> Dict[str, Any]:
        return {"terms": list(self.terms), "topic": self.topic.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SemanticFingerprint:
        return cls(terms=tuple(data.get("terms") or ()), topic=TopicLabel(data.get("topic", "general")))


@dataclass(frozen=True)
class CacheEntry:
    """Record stored under ``content:<fingerprint>``; never mutated."""

    fingerprint: str
    url: str
    source: str
    inserted_at: float
    expires_at: Optional[float] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=True)

    @classmethod
    def from_json(cls, raw: str) -> CacheEntry:
        data = json.loads(raw)
        return cls(
            fingerprint=data["fingerprint"],
            url=data.get("url", ""),
            source=data.get("source", ""),
            inserted_at=float(data.get("inserted_at", 0.0)),
            expires_at=data.get("expires_at"),
        )


@dataclass
class DedupDecision:
    """Result of ``evaluate``: the classification plus diagnostics."""

    decision: DuplicateType
    content_fingerprint: str
    semantic_fingerprint: Optional[SemanticFingerprint] = None
    matched_source: Optional[str] = None
    matched_url: Optional[str] = None
    overlap_score: Optional[float] = None
    degraded: bool = False
    confidence: Confidence = Confidence.HIGH
    unidentifiable: bool = False

    @property
    def accepted(self) -> bool:
        return self.decision is DuplicateType.NOVEL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": self.decision.value,
            "content_fingerprint": self.content_fingerprint,
            "topic": self.semantic_fingerprint.topic.value if self.semantic_fingerprint else None,
            "matched_source": self.matched_source,
            "matched_url": self.matched_url,
            "overlap_score": self.overlap_score,
            "degraded": self.degraded,
            "confidence": self.confidence.value,
            "unidentifiable": self.unidentifiable,
        }


@dataclass
class CommitResult:
    """Result of ``commit``."""

    committed: bool
    content_fingerprint: str
    decision: Optional[DuplicateType] = None
    degraded: bool = False
    written_keys: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CrosspostMarker:
    """Last successful relay to a destination platform."""

    destination: str
    timestamp: float
    content: Optional[str] = None

    def seconds_since(self, now: float) -> float:
        return max(0.0, now - self.timestamp)


@dataclass(frozen=True)
class TopicEntry:
    """One slot of the recent topics window."""

    label: TopicLabel
    timestamp: float

    def to_json(self) -> str:
        return json.dumps({"topic": self.label.value, "timestamp": self.timestamp})

    @classmethod
    def from_json(cls, raw: str) -> TopicEntry:
        data = json.loads(raw)
        return cls(label=TopicLabel(data["topic"]), timestamp=float(data["timestamp"]))


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
