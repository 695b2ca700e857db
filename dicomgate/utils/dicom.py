"""DICOM storage and parameter helpers."""

import re
from pathlib import Path

from dicomgate.exceptions.domain import ValidationError
from dicomgate.utils.logger import logger

# Dot-separated numeric components, no empty component
UID_PATTERN = re.compile(r"[0-9]+(\.[0-9]+)*")
MAX_UID_LENGTH = 64


def materialized_path(storage_root: Path, study_uid: str, sop_instance_uid: str) -> Path:
    """Path of a retrieved instance: ``<root>/<study>/<sop>.dcm``."""
    return storage_root / study_uid / f"{sop_instance_uid}.dcm"


def study_dir(storage_root: Path, study_uid: str) -> Path:
    """Directory holding every materialized instance of a study."""
    return storage_root / study_uid


def is_within(root: Path, path: Path) -> bool:
    """Whether ``path`` resolves to a location strictly below ``root``."""
    return root.resolve() in path.resolve().parents


def validate_uid(value: str, name: str) -> str:
    """Check ``value`` against the DICOM UID syntax before it is used in a file path.

    Raises:
        ValidationError: If ``value`` is not a UID
    """
    if len(value) > MAX_UID_LENGTH or not UID_PATTERN.fullmatch(value):
        raise ValidationError(f"Invalid {name}: {value!r}")
    return value


def parse_non_negative_int(value: str | None, name: str) -> int | None:
    """Parse a query parameter as a non-negative integer.

    Args:
        value: Raw parameter value, or None when absent
        name: Parameter name, used in the log message

    Returns:
        Parsed integer, or None if absent or unparseable
    """
    if value is None or value == "":
        return None
    try:
        number = int(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name} parameter: {value!r}")
        return None
    if number < 0:
        logger.warning(f"Ignoring negative {name} parameter: {number}")
        return None
    return number
