"""Repository layer for data access operations."""

from dicomgate.repositories.base import BaseRepository
from dicomgate.repositories.cache_entry_repository import CacheEntryRepository

__all__ = ["BaseRepository", "CacheEntryRepository"]
