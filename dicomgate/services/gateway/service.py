"""Gateway service: serves QIDO-RS and WADO requests from a DIMSE-only archive."""

import asyncio
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dicomgate.exceptions.domain import MetadataAssemblyError, StorageError
from dicomgate.services.dicom.client import DicomClient
from dicomgate.services.dicom.models import DicomNode, QueryRetrieveLevel
from dicomgate.services.gateway.cache import CacheStore
from dicomgate.services.gateway.cleanup import CacheSweepService
from dicomgate.services.gateway.metadata import assemble_metadata, first_object_uid
from dicomgate.services.gateway.query import (
    IMAGE_DEFAULT_TAGS,
    SERIES_DEFAULT_TAGS,
    STUDY_DEFAULT_TAGS,
    QueryTranslator,
)
from dicomgate.services.gateway.retrieve import RetrieveCoordinator
from dicomgate.settings import Settings
from dicomgate.utils.db_manager import DatabaseManager
from dicomgate.utils.dicom import materialized_path, validate_uid
from dicomgate.utils.logger import logger


class GatewayService:
    """Ties query translation, retrieve coordination and the cache store together.

    Image bytes are served from materialized files; a retrieve is started only when
    the requested file does not exist yet.
    """

    def __init__(
        self,
        client: DicomClient,
        translator: QueryTranslator,
        coordinator: RetrieveCoordinator,
        cache: CacheStore,
        storage_root: Path,
        source: DicomNode,
        target: DicomNode,
        use_cget: bool = False,
        clear_cache_on_startup: bool = False,
        sweep_interval: int = 0,
    ):
        """Initialize the gateway service.

        Args:
            client: DICOM client for the archive
            translator: Query translator for C-FIND
            coordinator: Retrieve coordinator for C-GET/C-MOVE
            cache: Cache store of retrieved studies
            storage_root: Root directory of materialized files
            source: Our own node
            target: Archive node
            use_cget: Whether retrieves use C-GET; otherwise a store listener is started
            clear_cache_on_startup: Sweep expired studies at startup
            sweep_interval: Seconds between periodic sweeps, 0 disables them
        """
        self._client = client
        self._translator = translator
        self._coordinator = coordinator
        self._cache = cache
        self.storage_root = storage_root
        self.source = source
        self.target = target
        self.use_cget = use_cget
        self.clear_cache_on_startup = clear_cache_on_startup
        self._sweeper = (
            CacheSweepService(cache, storage_root, sweep_interval) if sweep_interval > 0 else None
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayService":
        """Build the service and its collaborators from configuration."""
        source = DicomNode(**settings.source.model_dump())
        target = DicomNode(**settings.target.model_dump())
        client = DicomClient(max_pdu=settings.max_pdu)
        cache = CacheStore(DatabaseManager(settings.cache_database_url))
        translator = QueryTranslator(
            client,
            source,
            target,
            min_chars=settings.qido_min_chars,
            append_wildcard=settings.qido_append_wildcard,
        )
        coordinator = RetrieveCoordinator(
            client,
            cache,
            source,
            target,
            settings.storage_root,
            use_cget=settings.use_cget,
            keep_cache_minutes=settings.keep_cache_minutes,
            key_by_study=settings.retrieve_key_by_study,
            timeout=settings.retrieve_timeout,
        )
        return cls(
            client,
            translator,
            coordinator,
            cache,
            settings.storage_root,
            source,
            target,
            use_cget=settings.use_cget,
            clear_cache_on_startup=settings.clear_cache_on_startup,
            sweep_interval=settings.cache_sweep_interval,
        )

    async def startup(self) -> None:
        """Initialize the cache store, start the store listener and greet the archive."""
        self.storage_root.mkdir(parents=True, exist_ok=True)
        await self._cache.init()

        if not self.use_cget:
            self._client.start_listener(self.source, self.storage_root)

        await self.echo()

        if self.clear_cache_on_startup:
            await self.sweep()
        if self._sweeper is not None:
            await self._sweeper.start()

    async def shutdown(self) -> None:
        if self._sweeper is not None:
            await self._sweeper.stop()
        await self._coordinator.shutdown()
        self._client.stop_listener()
        await self._cache.close()

    async def echo(self) -> int | None:
        """C-ECHO the archive; the result is only logged."""
        try:
            status = await self._client.echo(self.source, self.target)
        except Exception as e:
            logger.error(f"C-ECHO to {self.target.aet} failed: {e}")
            return None
        logger.info(f"C-ECHO to {self.target.aet} answered with status {status}")
        return status

    async def search_studies(self, params: Mapping[str, str]) -> list[dict[str, Any]]:
        """QIDO-RS: Search for studies.

        Args:
            params: QIDO-RS query parameters (keyword filters, includefield, offset)

        Returns:
            List of DICOM JSON objects
        """
        results = await self._translator.find(QueryRetrieveLevel.STUDY, params, STUDY_DEFAULT_TAGS)
        logger.info(f"QIDO-RS: found {len(results)} studies")
        return results

    async def search_series(
        self, study_uid: str, params: Mapping[str, str]
    ) -> list[dict[str, Any]]:
        """QIDO-RS: Search for series within a study.

        Args:
            study_uid: Study Instance UID
            params: QIDO-RS query parameters

        Returns:
            List of DICOM JSON objects
        """
        validate_uid(study_uid, "study UID")
        query = {**params, "StudyInstanceUID": study_uid}
        results = await self._translator.find(QueryRetrieveLevel.SERIES, query, SERIES_DEFAULT_TAGS)
        logger.info(f"QIDO-RS: found {len(results)} series for study {study_uid}")
        return results

    async def search_instances(
        self, study_uid: str, series_uid: str, params: Mapping[str, str]
    ) -> list[dict[str, Any]]:
        """QIDO-RS: Search for instances within a series.

        Args:
            study_uid: Study Instance UID
            series_uid: Series Instance UID
            params: QIDO-RS query parameters

        Returns:
            List of DICOM JSON objects
        """
        validate_uid(study_uid, "study UID")
        validate_uid(series_uid, "series UID")
        query = {**params, "StudyInstanceUID": study_uid, "SeriesInstanceUID": series_uid}
        results = await self._translator.find(QueryRetrieveLevel.IMAGE, query, IMAGE_DEFAULT_TAGS)
        logger.info(f"QIDO-RS: found {len(results)} instances for series {series_uid}")
        return results

    async def retrieve_series_metadata(
        self, study_uid: str, series_uid: str, params: Mapping[str, str]
    ) -> list[dict[str, Any]]:
        """Metadata of every instance in a series, with pixel geometry.

        The geometry comes from the first match's file. If that file is not
        materialized yet, the series retrieve is started (or joined) and the call
        returns as soon as the first object is stored.

        Args:
            study_uid: Study Instance UID
            series_uid: Series Instance UID
            params: QIDO-RS query parameters

        Returns:
            List of DICOM JSON metadata objects

        Raises:
            ValidationError: If a UID is malformed
            MetadataAssemblyError: If no instances match or no file can be read
            RetrievalError: If the retrieve failed
        """
        records = await self.search_instances(study_uid, series_uid, params)
        if not records:
            logger.error(f"No metadata found for series {series_uid}")
            raise MetadataAssemblyError(f"No instances found for series {series_uid}")

        object_uid = first_object_uid(records)
        path = materialized_path(self.storage_root, study_uid, object_uid) if object_uid else None

        if path is None or not await asyncio.to_thread(path.exists):
            outcome = await self._coordinator.retrieve_or_wait(
                study_uid, series_uid, wait_for_first_image_only=True
            )
            object_uid = outcome.object_uid or object_uid
            if object_uid is None:
                raise MetadataAssemblyError(f"No SOP Instance UID available for series {series_uid}")
            path = materialized_path(self.storage_root, study_uid, object_uid)

        metadata = await asyncio.to_thread(assemble_metadata, records, path)
        logger.info(f"Metadata: {len(metadata)} instances for series {series_uid}")
        return metadata

    async def retrieve_instance(self, study_uid: str, series_uid: str, object_uid: str) -> Path:
        """Path of a materialized instance, retrieving its series first if needed.

        The existence of the file decides whether a retrieve is needed; the cache
        store is not consulted.

        Args:
            study_uid: Study Instance UID
            series_uid: Series Instance UID
            object_uid: SOP Instance UID

        Returns:
            Path of the materialized file

        Raises:
            ValidationError: If a UID is malformed
            RetrievalError: If the retrieve failed
            StorageError: If the file is still missing after the retrieve
        """
        validate_uid(study_uid, "study UID")
        validate_uid(series_uid, "series UID")
        validate_uid(object_uid, "object UID")

        path = materialized_path(self.storage_root, study_uid, object_uid)
        if await asyncio.to_thread(path.exists):
            return path

        await self._coordinator.retrieve_or_wait(study_uid, series_uid)

        if not await asyncio.to_thread(path.exists):
            logger.error(f"Instance {object_uid} missing after retrieving series {series_uid}")
            raise StorageError(f"Instance {object_uid} not found in storage")
        return path

    async def sweep(self, protected_id: str | None = None) -> int:
        """Evict expired studies, never ``protected_id``. Failures are logged, not raised."""
        try:
            return await self._cache.sweep(self.storage_root, protected_id)
        except Exception as e:
            logger.error(f"Cache sweep failed: {e}")
            return 0
