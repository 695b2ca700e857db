"""Async DICOM client for query-retrieve operations."""

import asyncio
from collections.abc import Callable
from pathlib import Path

from pynetdicom.transport import ThreadedAssociationServer  # type: ignore[import-not-found]

from dicomgate.services.dicom.models import (
    ArchiveEvent,
    ArchiveQuery,
    ArchiveResponse,
    AssociationConfig,
    DicomNode,
    RetrieveRequest,
)
from dicomgate.services.dicom.operations import DicomOperations
from dicomgate.utils.logger import logger


class DicomClient:
    """Async DICOM client for Query/Retrieve operations.

    This client provides async interface to DICOM operations while using
    synchronous pynetdicom library under the hood via asyncio.to_thread().
    Incremental retrieve events are delivered on the event loop thread.
    """

    def __init__(self, max_pdu: int = 16384):
        """Initialize DICOM client.

        Args:
            max_pdu: Maximum PDU size (0 for unlimited)
        """
        self.max_pdu = max_pdu
        self._operations = DicomOperations(max_pdu=max_pdu)
        self._listener: ThreadedAssociationServer | None = None

    def _create_association_config(
        self,
        source: DicomNode,
        target: DicomNode,
        timeout: float = 30.0,
    ) -> AssociationConfig:
        """Create association configuration.

        Args:
            source: Our own node (calling AE title)
            target: Archive node
            timeout: Association timeout

        Returns:
            Association configuration
        """
        return AssociationConfig(
            calling_aet=source.aet,
            called_aet=target.aet,
            peer_host=target.host,
            peer_port=target.port,
            max_pdu=self.max_pdu,
            timeout=timeout,
        )

    async def find(self, query: ArchiveQuery, timeout: float = 30.0) -> ArchiveResponse:
        """Run a C-FIND against the query's target node.

        Args:
            query: Archive query
            timeout: Association timeout

        Returns:
            Archive response with DICOM JSON records

        Raises:
            ArchiveError: If association fails
        """
        target = query.target
        logger.info(f"C-FIND {query.level.value} on {target.aet}@{target.host}:{target.port}")

        config = self._create_association_config(query.source, target, timeout=timeout)
        return await asyncio.to_thread(self._operations.find, config, query)

    async def retrieve(
        self,
        request: RetrieveRequest,
        on_event: Callable[[ArchiveEvent], None],
        use_cget: bool = False,
        timeout: float = 30.0,
    ) -> None:
        """Retrieve a series via C-GET or C-MOVE.

        Returns once the archive has sent its final response.

        Args:
            request: Retrieve request
            on_event: Called on the event loop for every status report
            use_cget: C-GET into the storage root instead of C-MOVE to our listener
            timeout: Association timeout

        Raises:
            ArchiveError: If association fails
        """
        loop = asyncio.get_running_loop()

        def deliver(event: ArchiveEvent) -> None:
            loop.call_soon_threadsafe(on_event, event)

        config = self._create_association_config(request.source, request.target, timeout=timeout)

        if use_cget:
            logger.info(f"C-GET series {request.series_instance_uid} to {request.storage_root}")
            await asyncio.to_thread(self._operations.get_series, config, request, deliver)
        else:
            logger.info(
                f"C-MOVE series {request.series_instance_uid} to {request.source.aet}"
            )
            await asyncio.to_thread(
                self._operations.move_series, config, request, request.source.aet, deliver
            )

    async def echo(self, source: DicomNode, target: DicomNode) -> int | None:
        """Send a C-ECHO to ``target``.

        Returns:
            Response status code, or None without a valid response

        Raises:
            ArchiveError: If association fails
        """
        logger.info(f"Sending C-ECHO to target: {target.aet}")
        config = self._create_association_config(source, target)
        return await asyncio.to_thread(self._operations.echo, config)

    def start_listener(self, node: DicomNode, storage_root: Path) -> None:
        """Start the Storage SCP receiving C-MOVE sub-operations."""
        if self._listener is not None:
            logger.warning("Storage SCP already running")
            return
        self._listener = self._operations.start_listener(node, storage_root)
        logger.info(f"Storage SCP {node.aet} listening on port {node.port}")

    def stop_listener(self) -> None:
        """Stop the Storage SCP if it is running."""
        if self._listener is not None:
            self._listener.shutdown()
            self._listener = None
            logger.info("Storage SCP stopped")
