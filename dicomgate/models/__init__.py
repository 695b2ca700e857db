"""
dicomgate data models.

This package contains the SQLModel-based models persisted by the cache store.
"""

from .cache import CacheEntry, as_utc, utcnow

__all__ = ["CacheEntry", "as_utc", "utcnow"]
