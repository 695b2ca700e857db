"""Pydantic models for the archive query/retrieve collaborator."""

from enum import Enum, IntEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

QUERY_RETRIEVE_LEVEL_TAG = "00080052"
SOP_INSTANCE_UID_TAG = "00080018"
PATIENT_NAME_TAG = "00100010"


class QueryRetrieveLevel(str, Enum):
    """DICOM Query/Retrieve levels."""

    STUDY = "STUDY"
    SERIES = "SERIES"
    IMAGE = "IMAGE"


class ArchiveStatus(IntEnum):
    """Status codes reported by the archive collaborator."""

    SUCCESS = 0
    STORED = 1  # One object stored, container carries its SOPInstanceUID
    PARTIAL_SUCCESS = 2
    PENDING = 3
    FAILURE = 4

    @property
    def is_terminal_success(self) -> bool:
        return self in (ArchiveStatus.SUCCESS, ArchiveStatus.PARTIAL_SUCCESS)


class DicomNode(BaseModel):
    """DICOM node configuration."""

    aet: str
    host: str
    port: int


class QueryFilter(BaseModel):
    """One key of a query identifier; an empty value requests the attribute back."""

    tag: str
    value: str = ""


class ArchiveQuery(BaseModel):
    """C-FIND request handed to the archive collaborator."""

    level: QueryRetrieveLevel
    filters: list[QueryFilter] = Field(default_factory=list)
    source: DicomNode
    target: DicomNode


class ArchiveResponse(BaseModel):
    """Result of an archive query; ``container`` holds DICOM JSON records on success."""

    code: ArchiveStatus
    container: list[dict[str, Any]] | None = None


class ArchiveEvent(BaseModel):
    """One incremental status report of a running retrieve."""

    code: ArchiveStatus
    container: dict[str, Any] = Field(default_factory=dict)

    @property
    def object_uid(self) -> str | None:
        value = self.container.get("SOPInstanceUID")
        return str(value) if value else None


class RetrieveRequest(BaseModel):
    """Series-level C-GET or C-MOVE request."""

    level: QueryRetrieveLevel = QueryRetrieveLevel.SERIES
    study_instance_uid: str
    series_instance_uid: str
    source: DicomNode
    target: DicomNode
    storage_root: Path

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for dataset creation."""
        return {
            "QueryRetrieveLevel": self.level.value,
            "StudyInstanceUID": self.study_instance_uid,
            "SeriesInstanceUID": self.series_instance_uid,
        }


class AssociationConfig(BaseModel):
    """Configuration for DICOM association."""

    calling_aet: str
    called_aet: str
    peer_host: str
    peer_port: int
    max_pdu: int = 16384
    timeout: float = 30.0
