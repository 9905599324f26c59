"""
Error taxonomy for StoryGuard.
"""
from __future__ import annotations

from typing import Optional


class StoryGuardError(Exception):
    """Base exception for StoryGuard errors."""
    pass


class StoreUnavailable(StoryGuardError):
    """Raised when the recency store cannot be reached or times out."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Recency store unavailable during '{operation}'{detail}")


class MalformedArticle(StoryGuardError):
    """Raised when an article lacks the title or description needed for fingerprinting."""

    def __init__(self, url: str, missing: list[str]):
        self.url = url
        self.missing = missing
        super().__init__(f"Article {url or '<no url>'} is missing {', '.join(missing)}")


class ConfigurationError(StoryGuardError):
    """Raised at startup when thresholds or TTLs are invalid."""
    pass
