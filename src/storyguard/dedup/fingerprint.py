"""
Article Fingerprinting for Exact and Semantic Deduplication.

Derives two fingerprints per article from its title and description:
- Content fingerprint: SHA-256 of the normalized text (HTML stripped,
  case-folded, URLs and punctuation removed, whitespace collapsed)
- Semantic fingerprint: top-N stemmed significant terms, named entities
  (exchanges, assets, regulators, places) first and then by in-text
  frequency, plus a coarse topic label from the fixed taxonomy

Both are pure functions of the article text, so the same input always yields
the same fingerprints regardless of call order or cache state.
"""

from __future__ import annotations

import hashlib
import html
import re
from collections import Counter
from typing import Dict, List, Tuple
from urllib.parse import urlsplit, urlunsplit

import structlog
from selectolax.parser import HTMLParser

from storyguard.protocols import EMPTY_FINGERPRINT, ContentFingerprint, SemanticFingerprint, TopicLabel

from .taxonomy import ENTITY_LEXICON, TOPIC_TRIGGERS, split_triggers

logger = structlog.get_logger(__name__)

_URL_PATTERN = re.compile(r"https?://\S+|www\.\S+")
_TAG_PATTERN = re.compile(r"<[a-zA-Z/!][^>]*>")
_PUNCT_PATTERN = re.compile(r"[\W_]+")
_WHITESPACE_PATTERN = re.compile(r"\s+")

DEFAULT_TOP_TERMS = 8

STOPWORDS = frozenset(
    """
    the and for with that this from have has had been were are was its is be being they them their
    theirs said says say will would could should over more most what when where which who whom whose
    than then your yours you our ours out use used way also get got any can all but not into onto
    about after before again against amid among around because between both during each few further
    here how just many much new news now off once only other own same she her him his some such
    there these those through too under until upon very while why yet amp via per report reports
    reported today week year years day days one two three first last latest just like make makes
    made may might must need needs still even back down since ahead across says according
    """.split()
)


class FingerprintGenerator:
    """
    Stateless fingerprint generator.

    Uses selectolax to strip markup that feeds often leave in descriptions,
    with a regex fallback for fragments it cannot parse.
    """

    def __init__(self, top_term_count: int = DEFAULT_TOP_TERMS) -> None:
        if top_term_count < 1:
            raise ValueError("top_term_count must be at least 1")
        self.top_term_count = top_term_count

        # Pre-split triggers once; declaration order is preserved.
        self._triggers: List[Tuple[TopicLabel, frozenset, Tuple[str, ...]]] = []
        for label, triggers in TOPIC_TRIGGERS.items():
            words, phrases = split_triggers(triggers)
            self._triggers.append((label, frozenset(stem(w) for w in words), phrases))

        entity_words, entity_phrases = split_triggers(tuple(e for names in ENTITY_LEXICON.values() for e in names))
        self._entity_stems = frozenset(stem(w) for w in entity_words)
        self._entity_phrases = entity_phrases

    def compute_content_fingerprint(self, title: str, description: str) -> ContentFingerprint:
        """
        Compute the exact-content fingerprint of an article.

        Args:
            title: Article headline
            description: Description or body snippet

        Returns:
            64-character hex digest. Empty text yields EMPTY_FINGERPRINT,
            which callers must treat as unidentifiable.
        """
        normalized = normalize_text(f"{title or ''} {description or ''}")
        return ContentFingerprint(hashlib.sha256(normalized.encode("utf-8")).hexdigest())

    def compute_semantic_fingerprint(self, title: str, description: str) -> SemanticFingerprint:
        """
        Compute the topic signature of an article.

        Args:
            title: Article headline
            description: Description or body snippet

        Returns:
            SemanticFingerprint with up to ``top_term_count`` terms: named
            entities first, then the most frequent terms (ties keep
            first-occurrence order).
        """
        normalized = normalize_text(f"{title or ''} {description or ''}")
        tokens = normalized.split()
        return SemanticFingerprint(
            terms=tuple(self.extract_terms(tokens)),
            topic=self.classify_topic(tokens, normalized),
        )

    def compute_url_fingerprint(self, url: str) -> ContentFingerprint:
        """Fingerprint of the canonical URL, used when an article has no usable text."""
        canonical = canonicalize_url(url)
        if not canonical:
            return EMPTY_FINGERPRINT
        return ContentFingerprint(hashlib.sha256(f"url:{canonical}".encode("utf-8")).hexdigest())

    def extract_terms(self, tokens: List[str]) -> List[str]:
        """
        Rank stemmed significant tokens and keep the top N.

        Named entities from the lexicon rank ahead of every other term and are
        kept even when short (``l2``, ``uk``). Multi-word entities become a
        single term joined with ``_`` (``spot_bitcoin``).
        """
        counts: Counter = Counter()
        first_seen: Dict[str, int] = {}
        entities = set()
        for position, token in enumerate(tokens):
            term = stem(token)
            if term in self._entity_stems:
                entities.add(term)
            elif len(token) < 3 or token.isdigit() or token in STOPWORDS:
                continue
            counts[term] += 1
            first_seen.setdefault(term, position)

        padded = f" {' '.join(tokens)} "
        for phrase in self._entity_phrases:
            start = padded.find(f" {phrase} ")
            if start < 0:
                continue
            term = phrase.replace(" ", "_")
            entities.add(term)
            counts[term] = padded.count(f" {phrase} ")
            first_seen[term] = len(padded[:start].split())

        ranked = sorted(counts, key=lambda term: (term not in entities, -counts[term], first_seen[term]))
        return ranked[: self.top_term_count]

    def classify_topic(self, tokens: List[str], normalized: str) -> TopicLabel:
        """First taxonomy category (in declaration order) with a trigger present."""
        token_stems = {stem(token) for token in tokens}
        padded = f" {normalized} "
        for label, word_stems, phrases in self._triggers:
            if token_stems & word_stems:
                return label
            if any(f" {phrase} " in padded for phrase in phrases):
                return label
        return TopicLabel.GENERAL


def normalize_text(text: str) -> str:
    """
    Normalize article text for hashing and tokenizing.

    Strips HTML, decodes entities, case-folds, removes URLs and punctuation
    and collapses whitespace. Never raises.
    """
    if not text or not text.strip():
        return ""

    if _TAG_PATTERN.search(text):
        plain = _strip_html(text)
    else:
        plain = html.unescape(text)

    plain = plain.casefold()
    plain = _URL_PATTERN.sub(" ", plain)
    plain = _PUNCT_PATTERN.sub(" ", plain)
    return _WHITESPACE_PATTERN.sub(" ", plain).strip()


def _strip_html(markup: str) -> str:
    try:
        tree = HTMLParser(markup)
        for tag in tree.css("script, style"):
            tag.decompose()
        root = tree.body or tree.root
        if root is None:
            return ""
        return root.text(separator=" ")
    except Exception as e:
        logger.debug("HTML parsing failed, using regex fallback", error=str(e))
        stripped = re.sub(r"<(script|style)\b.*?</\1>", " ", markup, flags=re.DOTALL | re.IGNORECASE)
        return html.unescape(_TAG_PATTERN.sub(" ", stripped))


def stem(word: str) -> str:
    """
    Light suffix-stripping stemmer.

    Folds common inflections (plurals, -ed, -ing, trailing -e) so that
    ``upgrade``, ``upgrades``, ``upgraded`` and ``upgrading`` share a term.
    """
    if len(word) <= 3:
        return word

    for suffix, replacement in (("sses", "ss"), ("ies", "y"), ("ied", "y")):
        if word.endswith(suffix) and len(word) > len(suffix) + 1:
            return word[: -len(suffix)] + replacement

    for suffix in ("ing", "ed"):
        if word.endswith(suffix) and len(word) - len(suffix) >= 3:
            word = word[: -len(suffix)]
            if len(word) > 3 and word[-1] == word[-2] and word[-1] not in "lsz":
                word = word[:-1]
            break
    else:
        if word.endswith("s") and not word.endswith(("ss", "us", "is")):
            word = word[:-1]

    if word.endswith("e") and len(word) > 3:
        word = word[:-1]
    return word


def canonicalize_url(url: str) -> str:
    """Lower-case scheme and host, drop the fragment and trailing slash."""
    if not url or not url.strip():
        return ""
    parts = urlsplit(url.strip())
    path = parts.path.rstrip("/")
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, parts.query, ""))
