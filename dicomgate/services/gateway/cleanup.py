"""Background service periodically sweeping expired studies."""

import asyncio
import contextlib
from pathlib import Path

from dicomgate.services.gateway.cache import CacheStore
from dicomgate.utils.logger import logger


class CacheSweepService:
    """Periodic eviction of expired studies from the storage root.

    Runs an ``asyncio.Task`` loop calling ``CacheStore.sweep()`` every
    ``sweep_interval`` seconds, in addition to the sweep after every served image.
    """

    def __init__(self, store: CacheStore, storage_root: Path, sweep_interval: int):
        """Initialize the sweep service.

        Args:
            store: The cache store to sweep
            storage_root: Root directory of materialized files
            sweep_interval: Interval between sweeps in seconds
        """
        self._store = store
        self._storage_root = storage_root
        self.sweep_interval = sweep_interval
        self.is_running = False
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self.is_running:
            logger.warning("Cache sweep service already running")
            return

        self.is_running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(f"Cache sweep service started (every {self.sweep_interval}s)")

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        self.is_running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        logger.info("Cache sweep service stopped")

    async def _sweep_loop(self) -> None:
        """Main loop, runs until ``is_running`` is False."""
        while self.is_running:
            try:
                await self.sweep_once()
                await asyncio.sleep(self.sweep_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in cache sweep: {e}")
                await asyncio.sleep(60)

    async def sweep_once(self) -> int:
        """Perform a single sweep (for manual / testing use).

        Returns:
            Number of studies evicted
        """
        evicted = await self._store.sweep(self._storage_root)
        if not evicted:
            logger.debug("Cache sweep: nothing to evict")
        return evicted
