"""Durable study expiry store and eviction sweep."""

import asyncio
import inspect
import shutil
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import TypeAlias

from dicomgate.models.cache import CacheEntry, as_utc, utcnow
from dicomgate.repositories.cache_entry_repository import CacheEntryRepository
from dicomgate.utils.db_manager import DatabaseManager
from dicomgate.utils.dicom import is_within, study_dir
from dicomgate.utils.logger import logger

EntryVisitor: TypeAlias = Callable[[str, datetime], Awaitable[None] | None]


class CacheStore:
    """Maps study uids to the instant their materialized files may be evicted.

    The mapping lives in a SQLite file so that retention survives restarts. It is
    advisory only: whether an image can be served is decided by the existence of
    its file, never by the presence of an entry here.
    """

    def __init__(self, db: DatabaseManager):
        """Initialize the store.

        Args:
            db: Database manager for the SQLite file backing the store
        """
        self._db = db
        self._initialized = False

    async def init(self) -> None:
        """Create the backing table. Must run before any retrieve completes."""
        if self._initialized:
            return
        await self._db.create_db_and_tables_async()
        self._initialized = True

    async def close(self) -> None:
        await self._db.close()
        self._initialized = False

    async def get(self, study_uid: str) -> datetime | None:
        """Expiry of ``study_uid``, or None when absent."""
        async with self._db.get_async_session_context() as session:
            entry = await CacheEntryRepository(session).get_optional(study_uid)
            return as_utc(entry.expires_at) if entry else None

    async def set(self, study_uid: str, expires_at: datetime) -> None:
        async with self._db.get_async_session_context() as session:
            await CacheEntryRepository(session).upsert(study_uid, expires_at)

    async def set_if_absent(self, study_uid: str, expires_at: datetime) -> bool:
        """Record ``study_uid`` unless an entry exists; existing entries keep their expiry.

        Returns:
            True if the study was newly cached
        """
        async with self._db.get_async_session_context() as session:
            return await CacheEntryRepository(session).insert_if_absent(study_uid, expires_at)

    async def remove(self, study_uid: str) -> bool:
        async with self._db.get_async_session_context() as session:
            return await CacheEntryRepository(session).delete_by_id(study_uid)

    async def entries(self) -> list[CacheEntry]:
        """Snapshot of all entries."""
        async with self._db.get_async_session_context() as session:
            return list(await CacheEntryRepository(session).list_all())

    async def for_each(self, visit: EntryVisitor) -> None:
        """Call ``visit(study_uid, expires_at)`` for every entry.

        The visitor may be a plain function or a coroutine function. It runs over a
        snapshot, so it may safely modify the store.
        """
        for entry in await self.entries():
            result = visit(entry.study_uid, as_utc(entry.expires_at))
            if inspect.isawaitable(result):
                await result

    async def record_retrieved(self, study_uid: str, keep_minutes: int | None) -> bool:
        """Record a completed study retrieve with expiry ``now + keep_minutes``.

        A negative or absent retention means the study is not cached.

        Returns:
            True if a new entry was written
        """
        if keep_minutes is None or keep_minutes < 0:
            return False
        return await self.set_if_absent(study_uid, utcnow() + timedelta(minutes=keep_minutes))

    @staticmethod
    def _delete_directory(directory: Path) -> bool:
        """Recursively delete ``directory``; a directory that is already gone counts as deleted."""
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.error(f"Failed to delete {directory}: {e}")
            return False
        return True

    async def sweep(self, storage_root: Path, protected_id: str | None = None) -> int:
        """Evict every expired study except ``protected_id``.

        An entry is removed only after its directory was deleted; if deletion fails
        both stay and the next sweep tries again. An entry whose directory would
        lie outside ``storage_root`` is dropped without touching the disk.

        Args:
            storage_root: Root directory of materialized files
            protected_id: Study currently being served, never evicted

        Returns:
            Number of studies evicted
        """
        now = utcnow()
        root = storage_root.resolve()
        evicted = 0

        for entry in await self.entries():
            if entry.study_uid == protected_id or not entry.is_expired(now):
                continue

            directory = study_dir(storage_root, entry.study_uid)
            if not is_within(root, directory):
                logger.error(f"Refusing to delete {directory}: outside {root}")
                await self.remove(entry.study_uid)
                continue

            deleted = await asyncio.to_thread(self._delete_directory, directory)
            if not deleted:
                continue

            await self.remove(entry.study_uid)
            evicted += 1
            logger.info(f"Deleted {directory}")

        if evicted:
            logger.info(f"Evicted {evicted} expired studies")
        return evicted
