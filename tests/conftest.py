"""Shared fixtures: temporary storage, cache store and a scripted archive client."""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

# Keep test runs from writing log files; must happen before dicomgate is imported
os.environ.setdefault("DICOMGATE_LOG_TO_FILE", "false")

import pytest
import pytest_asyncio

from dicomgate.services.gateway.cache import CacheStore
from dicomgate.services.gateway.query import QueryTranslator
from dicomgate.services.gateway.retrieve import RetrieveCoordinator
from dicomgate.services.gateway.service import GatewayService
from dicomgate.utils.db_manager import DatabaseManager
from tests.utils import SOURCE, TARGET, FakeArchiveClient


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    """Return a temporary storage root."""
    root = tmp_path / "storage"
    root.mkdir()
    return root


@pytest.fixture
def archive() -> FakeArchiveClient:
    return FakeArchiveClient()


@pytest_asyncio.fixture
async def cache_store(tmp_path: Path) -> AsyncGenerator[CacheStore, None]:
    """Cache store backed by a temporary SQLite file."""
    store = CacheStore(DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}"))
    await store.init()
    yield store
    await store.close()


@pytest.fixture
def gateway_service(
    archive: FakeArchiveClient, cache_store: CacheStore, storage_root: Path
) -> GatewayService:
    """Gateway service wired to the scripted archive."""
    translator = QueryTranslator(archive, SOURCE, TARGET, min_chars=0)
    coordinator = RetrieveCoordinator(
        archive, cache_store, SOURCE, TARGET, storage_root, keep_cache_minutes=60
    )
    return GatewayService(
        archive, translator, coordinator, cache_store, storage_root, SOURCE, TARGET
    )
