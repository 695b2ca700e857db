"""Single-flight coordination of series retrieves."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dicomgate.exceptions.domain import RetrievalError
from dicomgate.services.dicom.client import DicomClient
from dicomgate.services.dicom.models import (
    ArchiveEvent,
    ArchiveStatus,
    DicomNode,
    RetrieveRequest,
)
from dicomgate.services.gateway.cache import CacheStore
from dicomgate.utils.dicom import materialized_path, study_dir, validate_uid
from dicomgate.utils.logger import logger


@dataclass(slots=True)
class RetrieveOutcome:
    """Result shared by every waiter of a retrieve."""

    status: ArchiveStatus
    object_uid: str | None = None
    container: dict[str, Any] = field(default_factory=dict)


def _consume_exception(future: asyncio.Future[RetrieveOutcome]) -> None:
    # A failed future nobody awaited would otherwise be reported by asyncio
    if not future.cancelled():
        future.exception()


class RetrieveHandle:
    """One in-flight retrieve of a series.

    Carries two results: the first stored object, for callers that only need one
    representative image, and the terminal completion of the whole series.
    """

    def __init__(self, key: str, study_uid: str, series_uid: str):
        loop = asyncio.get_running_loop()
        self.key = key
        self.study_uid = study_uid
        self.series_uid = series_uid
        self.first_object: asyncio.Future[RetrieveOutcome] = loop.create_future()
        self.completed: asyncio.Future[RetrieveOutcome] = loop.create_future()
        self.first_object.add_done_callback(_consume_exception)
        self.completed.add_done_callback(_consume_exception)
        self.waiters = 0
        self.task: asyncio.Task[None] | None = None

    @property
    def done(self) -> bool:
        return self.completed.done()

    def resolve_first(self, outcome: RetrieveOutcome) -> None:
        if not self.first_object.done():
            self.first_object.set_result(outcome)

    def resolve(self, outcome: RetrieveOutcome) -> None:
        self.resolve_first(outcome)
        if not self.completed.done():
            self.completed.set_result(outcome)

    def fail(self, error: Exception) -> None:
        for future in (self.first_object, self.completed):
            if not future.done():
                future.set_exception(error)

    async def wait(self, first_object_only: bool = False) -> RetrieveOutcome:
        """Wait for the outcome; cancelling one waiter leaves the others untouched."""
        future = self.first_object if first_object_only else self.completed
        self.waiters += 1
        try:
            return await asyncio.shield(future)
        finally:
            self.waiters -= 1


class RetrieveCoordinator:
    """Joins callers onto a single archive retrieve per series.

    The registry of active retrieves is owned by the coordinator and is only
    touched through ``join_or_start`` and ``release``. Lookup and registration
    happen without an intervening suspension point, so no two archive retrieves
    for the same key are ever outstanding at once.
    """

    def __init__(
        self,
        client: DicomClient,
        cache: CacheStore,
        source: DicomNode,
        target: DicomNode,
        storage_root: Path,
        use_cget: bool = False,
        keep_cache_minutes: int | None = None,
        key_by_study: bool = False,
        timeout: float | None = None,
    ):
        """Initialize the coordinator.

        Args:
            client: DICOM client issuing C-GET/C-MOVE
            cache: Cache store recording completed studies
            source: Our own node (calling AE, C-MOVE destination)
            target: Archive node
            storage_root: Root directory of materialized files
            use_cget: Retrieve with C-GET instead of C-MOVE
            keep_cache_minutes: Retention of completed studies, None or negative disables
            key_by_study: Key retrieves by (study, series) instead of series alone
            timeout: Seconds before a retrieve is abandoned, None waits forever
        """
        self._client = client
        self._cache = cache
        self.source = source
        self.target = target
        self.storage_root = storage_root
        self.use_cget = use_cget
        self.keep_cache_minutes = keep_cache_minutes
        self.key_by_study = key_by_study
        self.timeout = timeout
        self._active: dict[str, RetrieveHandle] = {}

    def _key(self, study_uid: str, series_uid: str) -> str:
        if self.key_by_study:
            return f"{study_uid}/{series_uid}"
        return series_uid

    @property
    def active_count(self) -> int:
        return len(self._active)

    def is_active(self, study_uid: str, series_uid: str) -> bool:
        return self._key(study_uid, series_uid) in self._active

    def join_or_start(self, study_uid: str, series_uid: str) -> RetrieveHandle:
        """Return the in-flight handle for the series, starting a retrieve if there is none."""
        validate_uid(study_uid, "study UID")
        validate_uid(series_uid, "series UID")
        key = self._key(study_uid, series_uid)
        handle = self._active.get(key)
        if handle is not None:
            logger.debug(f"Joining in-flight retrieve of series {series_uid}")
            return handle

        handle = RetrieveHandle(key, study_uid, series_uid)
        self._active[key] = handle
        handle.task = asyncio.create_task(self._run(handle))
        handle.task.add_done_callback(lambda _task: self.release(handle))
        return handle

    def release(self, handle: RetrieveHandle) -> None:
        """Drop ``handle`` from the registry; a newer handle under the same key is kept."""
        if self._active.get(handle.key) is handle:
            del self._active[handle.key]

    async def retrieve_or_wait(
        self,
        study_uid: str,
        series_uid: str,
        wait_for_first_image_only: bool = False,
    ) -> RetrieveOutcome:
        """Retrieve a series, or join the retrieve already running for it.

        Args:
            study_uid: Study Instance UID
            series_uid: Series Instance UID
            wait_for_first_image_only: Return as soon as one object is stored

        Returns:
            The shared outcome; ``object_uid`` is set when resolved on a stored object

        Raises:
            RetrievalError: If the retrieve failed
        """
        handle = self.join_or_start(study_uid, series_uid)
        return await handle.wait(first_object_only=wait_for_first_image_only)

    def _build_request(self, handle: RetrieveHandle) -> RetrieveRequest:
        return RetrieveRequest(
            study_instance_uid=handle.study_uid,
            series_instance_uid=handle.series_uid,
            source=self.source,
            target=self.target,
            storage_root=self.storage_root,
        )

    async def _handle_event(self, handle: RetrieveHandle, event: ArchiveEvent) -> bool:
        """Apply one archive event to ``handle``.

        Returns:
            True once the retrieve reached a terminal success
        """
        if event.code == ArchiveStatus.STORED and event.object_uid:
            path = materialized_path(self.storage_root, handle.study_uid, event.object_uid)
            logger.info(f"Stored {path}")
            handle.resolve_first(
                RetrieveOutcome(
                    status=event.code, object_uid=event.object_uid, container=event.container
                )
            )
            return False

        if event.code.is_terminal_success:
            try:
                newly_cached = await self._cache.record_retrieved(
                    handle.study_uid, self.keep_cache_minutes
                )
            except Exception as e:
                logger.error(f"Failed to record cache entry for study {handle.study_uid}: {e}")
            else:
                if newly_cached:
                    logger.info(f"Stored {study_dir(self.storage_root, handle.study_uid)}")
            handle.resolve(RetrieveOutcome(status=event.code, container=event.container))
            return True

        logger.info(f"Retrieve of series {handle.series_uid}: {event.code.name} {event.container}")
        return False

    async def _run(self, handle: RetrieveHandle) -> None:
        """Drive one archive retrieve until the handle resolves.

        The handle stays registered until the archive call itself has finished,
        even when its waiters were already answered or failed by the timeout.
        """
        events: asyncio.Queue[ArchiveEvent | None] = asyncio.Queue()
        call: asyncio.Task[None] | None = None

        try:
            request = self._build_request(handle)
            call = asyncio.create_task(
                self._client.retrieve(request, events.put_nowait, use_cget=self.use_cget)
            )
            # The sentinel is queued after every event the call delivered
            call.add_done_callback(lambda _call: events.put_nowait(None))

            async with asyncio.timeout(self.timeout):
                while True:
                    event = await events.get()
                    if event is None:
                        break
                    if await self._handle_event(handle, event):
                        break

            if not handle.done:
                error = call.exception()
                if error is not None:
                    raise RetrievalError(handle.series_uid, str(error)) from error
                raise RetrievalError(
                    handle.series_uid, "archive finished without a success status"
                )

        except RetrievalError as e:
            logger.error(str(e))
            handle.fail(e)
        except TimeoutError:
            logger.error(f"Retrieve of series {handle.series_uid} timed out after {self.timeout}s")
            handle.fail(RetrievalError(handle.series_uid, "timed out"))
        except asyncio.CancelledError:
            handle.fail(RetrievalError(handle.series_uid, "cancelled"))
            if call is not None:
                call.cancel()
            raise
        except Exception as e:
            logger.error(f"Retrieve of series {handle.series_uid} failed: {e}")
            handle.fail(RetrievalError(handle.series_uid, str(e)))

        if call is not None and not call.done():
            await self._settle(handle, call)

    async def _settle(self, handle: RetrieveHandle, call: asyncio.Task[None]) -> None:
        """Wait for an archive call whose outcome no longer matters to any waiter."""
        logger.debug(f"Waiting for the archive to finish series {handle.series_uid}")
        try:
            await call
        except asyncio.CancelledError:
            call.cancel()
            raise
        except Exception as e:
            logger.warning(f"Archive call for series {handle.series_uid} ended with: {e}")

    async def shutdown(self) -> None:
        """Cancel every outstanding retrieve; their waiters fail with ``RetrievalError``."""
        tasks = [handle.task for handle in self._active.values() if handle.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} outstanding retrieves")
        self._active.clear()
