"""Event handlers for inbound C-STORE operations."""

from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeAlias

from pydicom import Dataset
from pynetdicom import evt

from dicomgate.utils.dicom import materialized_path
from dicomgate.utils.logger import logger

StoredCallback: TypeAlias = Callable[[str, str, Path], None]


class StorageHandler:
    """Writes every received instance below the storage root, one directory per study."""

    def __init__(
        self,
        storage_root: Path,
        on_stored: StoredCallback | None = None,
    ):
        """Initialize storage handler.

        Args:
            storage_root: Root directory for materialized files
            on_stored: Called with (study uid, SOP instance uid, path) after each write
        """
        self.storage_root = storage_root
        self.on_stored = on_stored
        self.num_stored = 0

        storage_root.mkdir(parents=True, exist_ok=True)

    def handle_store(self, event: evt.Event) -> int:
        """Handle C-STORE request.

        Args:
            event: pynetdicom event object

        Returns:
            Status code (0x0000 for success)
        """
        try:
            ds = event.dataset
            ds.file_meta = event.file_meta
            return self._store_to_disk(ds)
        except Exception as e:
            logger.error(f"Error handling C-STORE: {e}")
            return 0xC000  # Failure

    def _store_to_disk(self, ds: Dataset) -> int:
        """Store instance to disk.

        Args:
            ds: DICOM dataset

        Returns:
            Status code
        """
        study_uid = str(ds.StudyInstanceUID)
        sop_uid = str(ds.SOPInstanceUID)
        filepath = materialized_path(self.storage_root, study_uid, sop_uid)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        try:
            ds.save_as(filepath, enforce_file_format=True)
        except Exception as e:
            logger.error(f"Error storing {sop_uid} to disk: {e}")
            return 0xC000  # Failure

        self.num_stored += 1
        logger.debug(f"Stored instance to {filepath}")
        if self.on_stored is not None:
            self.on_stored(study_uid, sop_uid, filepath)
        return 0x0000  # Success


def create_store_handler(
    storage_root: Path,
    on_stored: StoredCallback | None = None,
) -> tuple[list[tuple[Any, Any]], StorageHandler]:
    """Create C-STORE event handler.

    Args:
        storage_root: Root directory for materialized files
        on_stored: Optional per-instance notification

    Returns:
        Tuple of (event handlers list, storage handler instance)
    """
    handler = StorageHandler(storage_root=storage_root, on_stored=on_stored)
    handlers = [(evt.EVT_C_STORE, handler.handle_store)]
    return handlers, handler
