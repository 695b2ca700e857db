"""Synchronous DICOM operations using pynetdicom."""

from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeAlias

from pydicom import Dataset
from pydicom.datadict import dictionary_VR
from pydicom.tag import Tag
from pynetdicom import AE, StoragePresentationContexts, build_role  # type: ignore[import-not-found]
from pynetdicom.pdu_primitives import (  # type: ignore[import-not-found]
    SCP_SCU_RoleSelectionNegotiation,
)
from pynetdicom.sop_class import (  # type: ignore[import-not-found,attr-defined]
    StudyRootQueryRetrieveInformationModelFind,
    StudyRootQueryRetrieveInformationModelGet,
    StudyRootQueryRetrieveInformationModelMove,
    Verification,
)
from pynetdicom.transport import ThreadedAssociationServer  # type: ignore[import-not-found]

from dicomgate.exceptions.domain import ArchiveError
from dicomgate.services.dicom.handlers import create_store_handler
from dicomgate.services.dicom.models import (
    ArchiveEvent,
    ArchiveQuery,
    ArchiveResponse,
    ArchiveStatus,
    AssociationConfig,
    DicomNode,
    RetrieveRequest,
)
from dicomgate.utils.logger import logger

EventCallback: TypeAlias = Callable[[ArchiveEvent], None]

_INTEGER_VRS = {"US", "UL", "SS", "SL", "UV", "SV"}


def _coerce_value(vr: str, value: str) -> Any:
    """Convert a filter string to the Python type pydicom expects for ``vr``."""
    if value == "":
        return None
    if vr in _INTEGER_VRS:
        return int(value)
    return value


def _suboperation_counters(status: Dataset) -> dict[str, int]:
    """Extract the sub-operation counters of a C-GET/C-MOVE response."""
    counters: dict[str, int] = {}
    for attr, key in (
        ("NumberOfRemainingSuboperations", "remaining"),
        ("NumberOfCompletedSuboperations", "completed"),
        ("NumberOfFailedSuboperations", "failed"),
        ("NumberOfWarningSuboperations", "warning"),
    ):
        value = getattr(status, attr, None)
        if value is not None:
            counters[key] = int(value)
    return counters


def _retrieve_status(code: int) -> ArchiveStatus:
    """Map a DIMSE retrieve status to an archive status code."""
    match code:
        case 0x0000:
            return ArchiveStatus.SUCCESS
        case 0xB000:
            # Sub-operations complete, one or more failures or warnings
            return ArchiveStatus.PARTIAL_SUCCESS
        case 0xFF00 | 0xFF01:
            return ArchiveStatus.PENDING
        case _:
            return ArchiveStatus.FAILURE


class DicomOperations:
    """Synchronous DICOM operations wrapper for pynetdicom."""

    def __init__(self, max_pdu: int = 16384):
        """Initialize DICOM operations.

        Args:
            max_pdu: Maximum PDU size (0 for unlimited)
        """
        self.max_pdu = max_pdu

    def _create_ae(self, calling_aet: str) -> AE:
        """Create Application Entity for C-FIND, C-MOVE and C-ECHO.

        Returns:
            Configured AE instance
        """
        ae = AE(ae_title=calling_aet)
        ae.maximum_pdu_size = self.max_pdu

        ae.add_requested_context(StudyRootQueryRetrieveInformationModelFind)
        ae.add_requested_context(StudyRootQueryRetrieveInformationModelMove)
        ae.add_requested_context(Verification)

        return ae

    def _create_get_ae(self, calling_aet: str) -> tuple[AE, list[SCP_SCU_RoleSelectionNegotiation]]:
        """Create Application Entity for C-GET with SCP/SCU role negotiation.

        C-GET requires the peer to send C-STORE sub-operations back to us,
        so we must negotiate SCP role for each storage presentation context.

        Returns:
            Tuple of (configured AE, role selection items for ext_neg)
        """
        ae = AE(ae_title=calling_aet)
        ae.maximum_pdu_size = self.max_pdu

        ae.add_requested_context(StudyRootQueryRetrieveInformationModelGet)

        # Limit to 127 (128 - 1 for the GET context) to stay within DICOM max
        storage_contexts = StoragePresentationContexts[:127]
        roles: list[SCP_SCU_RoleSelectionNegotiation] = []
        for cx in storage_contexts:
            if cx.abstract_syntax is not None:
                ae.add_requested_context(cx.abstract_syntax)
                roles.append(build_role(cx.abstract_syntax, scp_role=True))

        return ae, roles

    def _associate(self, ae: AE, config: AssociationConfig, **kwargs: Any) -> Any:
        """Open an association or raise ``ArchiveError``."""
        ae.acse_timeout = config.timeout
        assoc = ae.associate(
            config.peer_host,
            config.peer_port,
            ae_title=config.called_aet,
            **kwargs,
        )

        if not assoc.is_established:
            logger.error(f"Failed to establish association with {config.called_aet}")
            raise ArchiveError(
                f"Failed to establish DICOM association with "
                f"{config.called_aet}@{config.peer_host}:{config.peer_port}"
            )
        return assoc

    def build_query_dataset(self, query: ArchiveQuery) -> Dataset:
        """Build the C-FIND identifier from the query filters.

        Filters whose tag is not a known 8-digit DICOM tag are skipped.

        Args:
            query: Archive query

        Returns:
            DICOM dataset for query
        """
        ds = Dataset()
        for item in query.filters:
            try:
                tag = Tag(int(item.tag, 16))
                vr = dictionary_VR(tag)
            except (ValueError, KeyError):
                logger.warning(f"Skipping unknown query tag {item.tag!r}")
                continue
            try:
                ds.add_new(tag, vr, _coerce_value(vr, item.value))
            except ValueError:
                logger.warning(f"Skipping invalid value {item.value!r} for tag {item.tag}")
        return ds

    def _build_retrieve_dataset(self, request: RetrieveRequest) -> Dataset:
        """Build DICOM dataset for C-GET or C-MOVE.

        Args:
            request: Retrieve request parameters

        Returns:
            DICOM dataset for retrieve
        """
        ds = Dataset()
        for key, value in request.to_dict().items():
            setattr(ds, key, value)
        return ds

    def find(self, config: AssociationConfig, query: ArchiveQuery) -> ArchiveResponse:
        """Execute C-FIND and collect matches as DICOM JSON.

        Args:
            config: Association configuration
            query: Archive query

        Returns:
            Archive response, SUCCESS with the records or FAILURE

        Raises:
            ArchiveError: If association fails
        """
        ae = self._create_ae(config.calling_aet)
        ds = self.build_query_dataset(query)
        assoc = self._associate(ae, config)

        try:
            records: list[dict[str, Any]] = []
            responses = assoc.send_c_find(ds, StudyRootQueryRetrieveInformationModelFind)

            for status, identifier in responses:
                if not status:
                    logger.warning("C-FIND: connection timed out, aborted or invalid response")
                    return ArchiveResponse(code=ArchiveStatus.FAILURE)

                match status.Status:
                    case 0xFF00 | 0xFF01:
                        if identifier:
                            records.append(identifier.to_json_dict(suppress_invalid_tags=True))
                    case 0x0000:
                        logger.info(f"C-FIND completed successfully, found {len(records)} matches")
                    case _:
                        logger.warning(f"C-FIND failed with status: 0x{status.Status:04x}")
                        return ArchiveResponse(code=ArchiveStatus.FAILURE)

            return ArchiveResponse(code=ArchiveStatus.SUCCESS, container=records)

        finally:
            assoc.release()

    def _run_retrieve(self, responses: Any, on_event: EventCallback, operation: str) -> None:
        """Report every retrieve response through ``on_event``."""
        for status, _identifier in responses:
            if not status:
                logger.warning(f"{operation}: connection timed out, aborted or invalid response")
                on_event(ArchiveEvent(code=ArchiveStatus.FAILURE))
                return

            code = _retrieve_status(status.Status)
            container: dict[str, Any] = _suboperation_counters(status)
            container["status"] = f"0x{status.Status:04x}"
            if code == ArchiveStatus.FAILURE:
                logger.warning(f"{operation} status: 0x{status.Status:04x}")
            on_event(ArchiveEvent(code=code, container=container))

    def get_series(
        self, config: AssociationConfig, request: RetrieveRequest, on_event: EventCallback
    ) -> None:
        """Execute C-GET, storing instances below the request's storage root.

        Every stored instance is reported as a STORED event before the final status.

        Args:
            config: Association configuration
            request: Retrieve request
            on_event: Receives every status report

        Raises:
            ArchiveError: If association fails
        """
        ae, roles = self._create_get_ae(config.calling_aet)
        ds = self._build_retrieve_dataset(request)

        def on_stored(_study_uid: str, sop_uid: str, path: Path) -> None:
            on_event(
                ArchiveEvent(
                    code=ArchiveStatus.STORED,
                    container={"SOPInstanceUID": sop_uid, "path": str(path)},
                )
            )

        handlers, _storage_handler = create_store_handler(
            storage_root=request.storage_root,
            on_stored=on_stored,
        )

        assoc = self._associate(
            ae,
            config,
            evt_handlers=handlers,  # type: ignore[arg-type]
            ext_neg=roles,  # type: ignore[arg-type]
        )

        try:
            responses = assoc.send_c_get(ds, StudyRootQueryRetrieveInformationModelGet)
            self._run_retrieve(responses, on_event, "C-GET")
        finally:
            assoc.release()

    def move_series(
        self,
        config: AssociationConfig,
        request: RetrieveRequest,
        destination_aet: str,
        on_event: EventCallback,
    ) -> None:
        """Execute C-MOVE towards ``destination_aet`` (normally our own store listener).

        Args:
            config: Association configuration
            request: Retrieve request
            destination_aet: Move destination AE title
            on_event: Receives every status report

        Raises:
            ArchiveError: If association fails
        """
        ae = self._create_ae(config.calling_aet)
        ds = self._build_retrieve_dataset(request)
        assoc = self._associate(ae, config)

        try:
            responses = assoc.send_c_move(
                ds, destination_aet, StudyRootQueryRetrieveInformationModelMove
            )
            self._run_retrieve(responses, on_event, "C-MOVE")
        finally:
            assoc.release()

    def echo(self, config: AssociationConfig) -> int | None:
        """Execute C-ECHO.

        Returns:
            Status code of the response, or None if no valid response arrived

        Raises:
            ArchiveError: If association fails
        """
        ae = self._create_ae(config.calling_aet)
        assoc = self._associate(ae, config)
        try:
            status = assoc.send_c_echo()
            return int(status.Status) if status else None
        finally:
            assoc.release()

    def start_listener(self, node: DicomNode, storage_root: Path) -> ThreadedAssociationServer:
        """Start a non-blocking Storage SCP writing received instances below ``storage_root``.

        Args:
            node: Our own AE title and listening address
            storage_root: Root directory for materialized files

        Returns:
            Running association server; call ``shutdown()`` to stop it
        """
        ae = AE(ae_title=node.aet)
        ae.maximum_pdu_size = self.max_pdu
        ae.supported_contexts = StoragePresentationContexts
        ae.add_supported_context(Verification)

        handlers, _storage_handler = create_store_handler(storage_root=storage_root)
        return ae.start_server(
            ("0.0.0.0", node.port),
            block=False,
            evt_handlers=handlers,  # type: ignore[arg-type]
        )
