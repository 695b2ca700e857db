"""Repository for cache store entries."""

from datetime import datetime

from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from dicomgate.models.cache import CacheEntry, as_utc
from dicomgate.repositories.base import BaseRepository


class CacheEntryRepository(BaseRepository[CacheEntry]):
    """Study uid → expiry mapping persisted in SQLite."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, CacheEntry)

    async def upsert(self, study_uid: str, expires_at: datetime) -> None:
        """Create or overwrite the entry for ``study_uid``."""
        statement = insert(CacheEntry).values(
            study_uid=study_uid, expires_at=as_utc(expires_at)
        )
        statement = statement.on_conflict_do_update(
            index_elements=["study_uid"],
            set_={"expires_at": statement.excluded.expires_at},
        )
        await self.session.execute(statement)
        await self.session.commit()

    async def insert_if_absent(self, study_uid: str, expires_at: datetime) -> bool:
        """Create the entry unless one exists, in a single statement.

        Returns:
            True if a new entry was written
        """
        statement = (
            insert(CacheEntry)
            .values(study_uid=study_uid, expires_at=as_utc(expires_at))
            .on_conflict_do_nothing(index_elements=["study_uid"])
        )
        result = await self.session.execute(statement)
        await self.session.commit()
        return bool(result.rowcount)
