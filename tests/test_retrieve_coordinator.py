"""Tests for single-flight series retrieves."""

import asyncio
import threading
import time
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

import pytest

from dicomgate.exceptions.domain import ArchiveError, RetrievalError
from dicomgate.models.cache import utcnow
from dicomgate.services.dicom.models import ArchiveEvent, ArchiveStatus, RetrieveRequest
from dicomgate.services.gateway.cache import CacheStore
from dicomgate.services.gateway.retrieve import RetrieveCoordinator
from dicomgate.utils.dicom import materialized_path
from tests.utils import SOURCE, TARGET, FakeArchiveClient, stored

STUDY = "1.2.3"
SERIES = "1.2.3.4"


class BlockingArchiveClient(FakeArchiveClient):
    """Archive whose retrieve blocks a worker thread, like a real association."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self.calls = 0
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()

    def _blocking_retrieve(self) -> None:
        with self._lock:
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        try:
            time.sleep(self.delay)
        finally:
            with self._lock:
                self.running -= 1

    async def retrieve(
        self,
        request: RetrieveRequest,
        on_event: Callable[[ArchiveEvent], None],
        use_cget: bool = False,
        timeout: float = 30.0,
    ) -> None:
        self.calls += 1
        await asyncio.to_thread(self._blocking_retrieve)
        on_event(ArchiveEvent(code=ArchiveStatus.SUCCESS))


@pytest.fixture
def coordinator(
    archive: FakeArchiveClient, cache_store: CacheStore, storage_root: Path
) -> RetrieveCoordinator:
    return RetrieveCoordinator(
        archive, cache_store, SOURCE, TARGET, storage_root, keep_cache_minutes=10
    )


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_retrieve(
        self, coordinator: RetrieveCoordinator, archive: FakeArchiveClient
    ) -> None:
        archive.gate = asyncio.Event()
        archive.events = [stored("1.2.3.4.1"), ArchiveEvent(code=ArchiveStatus.SUCCESS)]

        first = asyncio.create_task(coordinator.retrieve_or_wait(STUDY, SERIES))
        second = asyncio.create_task(coordinator.retrieve_or_wait(STUDY, SERIES))
        await asyncio.sleep(0.01)

        assert len(archive.retrieve_calls) == 1
        assert coordinator.is_active(STUDY, SERIES)

        archive.gate.set()
        outcome_a, outcome_b = await asyncio.gather(first, second)

        assert outcome_a is outcome_b
        assert outcome_a.status == ArchiveStatus.SUCCESS
        assert len(archive.retrieve_calls) == 1

    @pytest.mark.asyncio
    async def test_request_targets_the_series(
        self,
        coordinator: RetrieveCoordinator,
        archive: FakeArchiveClient,
        storage_root: Path,
    ) -> None:
        await coordinator.retrieve_or_wait(STUDY, SERIES)

        request = archive.retrieve_calls[0]
        assert request.study_instance_uid == STUDY
        assert request.series_instance_uid == SERIES
        assert request.source == SOURCE
        assert request.target == TARGET
        assert request.storage_root == storage_root

    @pytest.mark.asyncio
    async def test_handle_released_after_completion(
        self, coordinator: RetrieveCoordinator, archive: FakeArchiveClient
    ) -> None:
        handle = coordinator.join_or_start(STUDY, SERIES)
        assert handle.task is not None
        await handle.task

        assert coordinator.active_count == 0

        await coordinator.retrieve_or_wait(STUDY, SERIES)
        assert len(archive.retrieve_calls) == 2

    @pytest.mark.asyncio
    async def test_series_key_ignores_study(
        self, coordinator: RetrieveCoordinator, archive: FakeArchiveClient
    ) -> None:
        archive.gate = asyncio.Event()
        archive.events = [ArchiveEvent(code=ArchiveStatus.PENDING), ArchiveEvent(code=ArchiveStatus.SUCCESS)]

        first = coordinator.join_or_start("1.1", SERIES)
        second = coordinator.join_or_start("2.2", SERIES)

        assert first is second
        archive.gate.set()
        await first.wait()

    @pytest.mark.asyncio
    async def test_study_and_series_key(
        self,
        archive: FakeArchiveClient,
        cache_store: CacheStore,
        storage_root: Path,
    ) -> None:
        coordinator = RetrieveCoordinator(
            archive, cache_store, SOURCE, TARGET, storage_root, key_by_study=True
        )

        first = coordinator.join_or_start("1.1", SERIES)
        second = coordinator.join_or_start("2.2", SERIES)

        assert first is not second
        await asyncio.gather(first.wait(), second.wait())
        assert len(archive.retrieve_calls) == 2


class TestCompletion:
    @pytest.mark.asyncio
    async def test_success_records_cache_entry(
        self, coordinator: RetrieveCoordinator, cache_store: CacheStore
    ) -> None:
        await coordinator.retrieve_or_wait(STUDY, SERIES)

        expires_at = await cache_store.get(STUDY)
        assert expires_at is not None
        assert expires_at <= utcnow() + timedelta(minutes=10)
        assert expires_at > utcnow() + timedelta(minutes=9)

    @pytest.mark.asyncio
    async def test_negative_retention_skips_cache_entry(
        self,
        archive: FakeArchiveClient,
        cache_store: CacheStore,
        storage_root: Path,
    ) -> None:
        coordinator = RetrieveCoordinator(
            archive, cache_store, SOURCE, TARGET, storage_root, keep_cache_minutes=-1
        )

        outcome = await coordinator.retrieve_or_wait(STUDY, SERIES)

        assert outcome.status == ArchiveStatus.SUCCESS
        assert await cache_store.get(STUDY) is None

    @pytest.mark.asyncio
    async def test_partial_success_is_terminal(
        self,
        coordinator: RetrieveCoordinator,
        archive: FakeArchiveClient,
        cache_store: CacheStore,
    ) -> None:
        archive.events = [ArchiveEvent(code=ArchiveStatus.PARTIAL_SUCCESS)]

        outcome = await coordinator.retrieve_or_wait(STUDY, SERIES)

        assert outcome.status == ArchiveStatus.PARTIAL_SUCCESS
        assert await cache_store.get(STUDY) is not None

    @pytest.mark.asyncio
    async def test_intermediate_codes_keep_waiting(
        self, coordinator: RetrieveCoordinator, archive: FakeArchiveClient
    ) -> None:
        archive.events = [
            ArchiveEvent(code=ArchiveStatus.PENDING, container={"remaining": 2}),
            ArchiveEvent(code=ArchiveStatus.FAILURE, container={"status": "0xa701"}),
            stored("1.2.3.4.1"),
            ArchiveEvent(code=ArchiveStatus.SUCCESS, container={"completed": 1}),
        ]

        outcome = await coordinator.retrieve_or_wait(STUDY, SERIES)

        assert outcome.status == ArchiveStatus.SUCCESS
        assert outcome.container == {"completed": 1}


class TestFirstImageOnly:
    @pytest.mark.asyncio
    async def test_resolves_on_first_stored_object(
        self,
        coordinator: RetrieveCoordinator,
        archive: FakeArchiveClient,
        cache_store: CacheStore,
        storage_root: Path,
    ) -> None:
        archive.gate = asyncio.Event()
        archive.events = [stored("1.2.3.4.1"), stored("1.2.3.4.2"), ArchiveEvent(code=ArchiveStatus.SUCCESS)]

        outcome = await coordinator.retrieve_or_wait(
            STUDY, SERIES, wait_for_first_image_only=True
        )

        assert outcome.status == ArchiveStatus.STORED
        assert outcome.object_uid == "1.2.3.4.1"
        assert materialized_path(storage_root, STUDY, "1.2.3.4.1").exists()
        # The series is still being retrieved
        assert coordinator.is_active(STUDY, SERIES)
        assert await cache_store.get(STUDY) is None

        archive.gate.set()
        handle = coordinator.join_or_start(STUDY, SERIES)
        completed = await handle.wait()
        assert completed.status == ArchiveStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_falls_back_to_completion_without_stored_event(
        self, coordinator: RetrieveCoordinator
    ) -> None:
        outcome = await coordinator.retrieve_or_wait(
            STUDY, SERIES, wait_for_first_image_only=True
        )

        assert outcome.status == ArchiveStatus.SUCCESS
        assert outcome.object_uid is None


class TestFailures:
    @pytest.mark.asyncio
    async def test_archive_error_fails_every_waiter(
        self, coordinator: RetrieveCoordinator, archive: FakeArchiveClient
    ) -> None:
        archive.retrieve_error = ArchiveError("association rejected")

        results = await asyncio.gather(
            coordinator.retrieve_or_wait(STUDY, SERIES),
            coordinator.retrieve_or_wait(STUDY, SERIES, wait_for_first_image_only=True),
            return_exceptions=True,
        )

        assert all(isinstance(result, RetrievalError) for result in results)
        assert "association rejected" in str(results[0])
        assert len(archive.retrieve_calls) == 1

    @pytest.mark.asyncio
    async def test_failed_key_can_be_retried(
        self, coordinator: RetrieveCoordinator, archive: FakeArchiveClient
    ) -> None:
        archive.retrieve_error = ArchiveError("association rejected")
        handle = coordinator.join_or_start(STUDY, SERIES)
        with pytest.raises(RetrievalError):
            await handle.wait()
        assert handle.task is not None
        await handle.task
        assert coordinator.active_count == 0

        archive.retrieve_error = None
        outcome = await coordinator.retrieve_or_wait(STUDY, SERIES)
        assert outcome.status == ArchiveStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_no_terminal_status_fails(
        self,
        coordinator: RetrieveCoordinator,
        archive: FakeArchiveClient,
        cache_store: CacheStore,
    ) -> None:
        archive.events = [ArchiveEvent(code=ArchiveStatus.PENDING)]

        with pytest.raises(RetrievalError, match="without a success status"):
            await coordinator.retrieve_or_wait(STUDY, SERIES)
        assert await cache_store.get(STUDY) is None

    @pytest.mark.asyncio
    async def test_timeout_fails_waiters(
        self,
        archive: FakeArchiveClient,
        cache_store: CacheStore,
        storage_root: Path,
    ) -> None:
        coordinator = RetrieveCoordinator(
            archive, cache_store, SOURCE, TARGET, storage_root, timeout=0.05
        )
        archive.gate = asyncio.Event()
        archive.events = [ArchiveEvent(code=ArchiveStatus.PENDING), ArchiveEvent(code=ArchiveStatus.SUCCESS)]

        with pytest.raises(RetrievalError, match="timed out"):
            await coordinator.retrieve_or_wait(STUDY, SERIES)

        archive.gate.set()
        while coordinator.is_active(STUDY, SERIES):
            await asyncio.sleep(0.01)

    @pytest.mark.asyncio
    async def test_timed_out_retrieve_holds_series_until_archive_returns(
        self, cache_store: CacheStore, storage_root: Path
    ) -> None:
        archive = BlockingArchiveClient(delay=0.5)
        coordinator = RetrieveCoordinator(
            archive, cache_store, SOURCE, TARGET, storage_root, timeout=0.1
        )

        with pytest.raises(RetrievalError, match="timed out"):
            await coordinator.retrieve_or_wait(STUDY, SERIES)
        assert coordinator.is_active(STUDY, SERIES)

        with pytest.raises(RetrievalError, match="timed out"):
            await coordinator.retrieve_or_wait(STUDY, SERIES)

        handle = coordinator.join_or_start(STUDY, SERIES)
        assert handle.task is not None
        await handle.task

        assert archive.calls == 1
        assert archive.max_running == 1
        assert coordinator.active_count == 0

        archive.delay = 0.0
        # A fresh request after the archive returned starts a new retrieve
        await coordinator.retrieve_or_wait(STUDY, SERIES)
        assert archive.calls == 2

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_others_waiting(
        self, coordinator: RetrieveCoordinator, archive: FakeArchiveClient
    ) -> None:
        archive.gate = asyncio.Event()
        archive.events = [ArchiveEvent(code=ArchiveStatus.PENDING), ArchiveEvent(code=ArchiveStatus.SUCCESS)]

        impatient = asyncio.create_task(coordinator.retrieve_or_wait(STUDY, SERIES))
        patient = asyncio.create_task(coordinator.retrieve_or_wait(STUDY, SERIES))
        await asyncio.sleep(0.01)

        impatient.cancel()
        with pytest.raises(asyncio.CancelledError):
            await impatient

        archive.gate.set()
        outcome = await patient
        assert outcome.status == ArchiveStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_shutdown_fails_outstanding_retrieves(
        self, coordinator: RetrieveCoordinator, archive: FakeArchiveClient
    ) -> None:
        archive.gate = asyncio.Event()
        archive.events = [ArchiveEvent(code=ArchiveStatus.PENDING), ArchiveEvent(code=ArchiveStatus.SUCCESS)]

        waiter = asyncio.create_task(coordinator.retrieve_or_wait(STUDY, SERIES))
        await asyncio.sleep(0.01)

        await coordinator.shutdown()

        with pytest.raises(RetrievalError, match="cancelled"):
            await waiter
        assert coordinator.active_count == 0
