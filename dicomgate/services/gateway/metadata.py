"""Series metadata assembly from C-FIND matches and one materialized file.

C-FIND at IMAGE level does not return pixel geometry, which viewers need before
loading any frame. The geometry is read from a single representative instance and
stamped onto every match, assuming all images of a series share it.
"""

from pathlib import Path
from typing import Any

import pydicom
from pydicom.errors import InvalidDicomError
from pydicom.multival import MultiValue

from dicomgate.exceptions.domain import MetadataAssemblyError
from dicomgate.services.dicom.models import SOP_INSTANCE_UID_TAG

# (tag, keyword, VR)
PIXEL_GEOMETRY_FIELDS = [
    ("00280100", "BitsAllocated", "US"),
    ("00280101", "BitsStored", "US"),
    ("00280102", "HighBit", "US"),
    ("00280010", "Rows", "US"),
    ("00280011", "Columns", "US"),
    ("00280030", "PixelSpacing", "DS"),
]


def first_object_uid(records: list[dict[str, Any]]) -> str | None:
    """SOP Instance UID of the first C-FIND match, if it carries one."""
    if not records:
        return None
    values = records[0].get(SOP_INSTANCE_UID_TAG, {}).get("Value") or []
    return str(values[0]) if values else None


def read_pixel_geometry(path: Path) -> dict[str, dict[str, Any]]:
    """Read the pixel geometry header fields of ``path`` as DICOM JSON elements.

    Attributes absent from the file are left out.

    Raises:
        MetadataAssemblyError: If the file is missing or not readable DICOM
    """
    try:
        ds = pydicom.dcmread(path, stop_before_pixels=True)
    except (OSError, InvalidDicomError) as e:
        raise MetadataAssemblyError(f"Cannot read representative instance {path}: {e}") from e

    elements: dict[str, dict[str, Any]] = {}
    for tag, keyword, vr in PIXEL_GEOMETRY_FIELDS:
        value = ds.get(keyword)
        if value is None or value == "":
            continue
        if vr == "DS":
            items = value if isinstance(value, MultiValue | list) else [value]
            values = [float(v) for v in items]
        else:
            values = [int(value)]
        elements[tag] = {"vr": vr, "Value": values}
    return elements


def assemble_metadata(records: list[dict[str, Any]], path: Path) -> list[dict[str, Any]]:
    """Stamp the pixel geometry of ``path`` onto every record.

    Args:
        records: IMAGE-level C-FIND matches in DICOM JSON
        path: Representative materialized instance

    Returns:
        The same records, updated in place

    Raises:
        MetadataAssemblyError: If there are no records or the file cannot be read
    """
    if not records:
        raise MetadataAssemblyError("No instances found for metadata")

    geometry = read_pixel_geometry(path)
    for record in records:
        record.update({tag: dict(element) for tag, element in geometry.items()})
    return records
