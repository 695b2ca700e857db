"""DICOM client for query-retrieve operations."""

from dicomgate.services.dicom.client import DicomClient
from dicomgate.services.dicom.models import (
    ArchiveEvent,
    ArchiveQuery,
    ArchiveResponse,
    ArchiveStatus,
    DicomNode,
    QueryFilter,
    QueryRetrieveLevel,
    RetrieveRequest,
)

__all__ = [
    "ArchiveEvent",
    "ArchiveQuery",
    "ArchiveResponse",
    "ArchiveStatus",
    "DicomClient",
    "DicomNode",
    "QueryFilter",
    "QueryRetrieveLevel",
    "RetrieveRequest",
]
