"""
Cache store models.

A cache entry records when the materialized files of a study may be evicted.
All instants are timezone-aware UTC.
"""

from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def as_utc(value: datetime) -> datetime:
    """Normalize ``value`` to aware UTC; naive values are taken to be UTC already.

    SQLite has no timezone storage, so depending on the column type a stored
    instant may come back naive.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CacheEntry(SQLModel, table=True):
    """Expiry instant of a retrieved study."""

    __tablename__ = "cache_entry"

    study_uid: str = Field(primary_key=True, min_length=1, max_length=64)
    expires_at: datetime = Field(index=True)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether the expiry lies strictly in the past."""
        return as_utc(self.expires_at) < as_utc(now or utcnow())
